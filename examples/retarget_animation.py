#!/usr/bin/env python3
"""
Example: retarget the animations of one GLB onto the skeleton of another.

    python examples/retarget_animation.py source.glb target.glb output.glb
"""

import sys

from retargetkit import RetargetManager, RetargetOptions, load_model
from retargetkit.common import get_logger
from retargetkit.exporter import export_clips

logger = get_logger("retargetkit")


def main(source_path, target_path, output_path):
    source = load_model(source_path)
    target = load_model(target_path)

    manager = RetargetManager(options=RetargetOptions(auto_apply_t_pose=True))
    manager.set_source_model(source)
    manager.set_target_model(target)

    bone_map = manager.auto_map_bones()
    if bone_map is None or len(bone_map) == 0:
        logger.error("No bones could be mapped")
        return 1

    report = manager.verify_bone_compatibility()
    logger.info(f"Compatibility: {report.level} ({report.match_percentage}%)")

    clips = manager.retarget_all_animations(source.clips)
    for diagnostic in manager.diagnostics:
        logger.debug(str(diagnostic))
    if not clips:
        logger.error("Nothing was retargeted")
        return 1

    export_clips(clips, output_path, target_path=target_path)
    logger.info(f"Wrote {len(clips)} animations to {output_path}")
    return 0


if __name__ == "__main__":
    if len(sys.argv) != 4:
        print(__doc__)
        sys.exit(2)
    sys.exit(main(*sys.argv[1:]))
