#!/usr/bin/env python3
"""
Rig inspector: print the skeleton, rig family and clips of a GLB/GLTF file.
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..animation.clip import clip_stats
from ..exceptions import InvalidInputError
from ..importer.glb.loader import load_model
from ..importer.model import ParsedModel
from ..pose.coordinates import CoordinateSystemDetector
from ..pose.normalization import PoseNormalization
from ..skeleton.analyzer import SkeletonAnalyzer


def inspect_model(model: ParsedModel) -> Dict[str, Any]:
    """Summary of a loaded model as a JSON-friendly dict."""
    analyzer = SkeletonAnalyzer()
    report: Dict[str, Any] = {
        'name': model.name,
        'file': model.source_path,
        'hasSkeleton': model.has_skeleton,
        'clips': [clip_stats(c) for c in model.clips],
        'coordinates': CoordinateSystemDetector().detect_model(model).to_dict(),
    }
    if model.has_skeleton:
        skeleton = model.skeleton
        report['bones'] = [
            {'name': b.name, 'parent': skeleton[b.parent_index].name if b.parent_index >= 0 else None}
            for b in skeleton
        ]
        report['hierarchy'] = analyzer.analyze(skeleton).to_dict()
        report['rigFamily'] = analyzer.classify_rig(skeleton).value
        report['pose'] = PoseNormalization().detect_pose_type(skeleton).value
    return report


def print_report(report: Dict[str, Any], max_bones: int = 40):
    print(f"\n{'=' * 70}")
    print(f"RIG INSPECTION: {report['name']}")
    print(f"{'=' * 70}")

    if not report['hasSkeleton']:
        print("\n1. SKELETON: none")
    else:
        hierarchy = report['hierarchy']
        print("\n1. SKELETON:")
        print(f"   Bones: {hierarchy['boneCount']}")
        print(f"   Rig family: {report['rigFamily']}")
        print(f"   Root bones: {', '.join(hierarchy['rootBones'])}")
        print(f"   Functional root: {hierarchy['functionalRoot']}")
        print(f"   Max depth: {hierarchy['maxDepth']}")
        print(f"   Limbs: {hierarchy['limbCount']}  Symmetric: {hierarchy['hasSymmetry']}")
        print(f"   Bind pose: {report['pose']}")

        print("\n2. BONES:")
        for bone in report['bones'][:max_bones]:
            parent = bone['parent'] or '-'
            print(f"   {bone['name']}  <- {parent}")
        if len(report['bones']) > max_bones:
            print(f"   ... and {len(report['bones']) - max_bones} more bones")

        if hierarchy['duplicates']:
            print("\n   Duplicate bone names:")
            for name, count in hierarchy['duplicates'].items():
                print(f"     {name} (x{count})")

    coords = report['coordinates']
    print("\n3. COORDINATES:")
    print(f"   Up: {coords['upAxis']}  Forward: {coords['forwardAxis']}  "
          f"Handedness: {coords['handedness']}  Scale: {coords['estimatedScale']}")

    print("\n4. ANIMATIONS:")
    if not report['clips']:
        print("   none")
    for clip in report['clips']:
        print(f"   {clip['name']}: {clip['duration']:.2f}s, {clip['trackCount']} tracks "
              f"({', '.join(clip['trackTypes'])})")


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Inspect the skeleton and animations of a GLB/GLTF file")
    parser.add_argument("files", nargs="+", help="GLB or GLTF files")
    parser.add_argument("--json", action="store_true", help="Print a JSON report instead of text")
    parser.add_argument("--max-bones", type=int, default=40, help="Bones listed in the text report")
    args = parser.parse_args(argv)

    reports = []
    status = 0
    for file_path in args.files:
        if not Path(file_path).exists():
            print(f"File not found: {file_path}", file=sys.stderr)
            status = 1
            continue
        try:
            model = load_model(file_path)
        except InvalidInputError as e:
            print(f"Cannot load {file_path}: {e}", file=sys.stderr)
            status = 1
            continue
        report = inspect_model(model)
        reports.append(report)
        if not args.json:
            print_report(report, args.max_bones)

    if args.json:
        print(json.dumps(reports if len(reports) != 1 else reports[0], indent=2, default=str))
    return status


if __name__ == "__main__":
    sys.exit(main())
