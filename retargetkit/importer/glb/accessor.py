"""
GLB accessor reader for extracting data from buffers.
"""

import logging
from pathlib import Path
from typing import Optional

import numpy as np
from pygltflib import GLTF2, Accessor, Buffer

from ...exceptions import GLBParseError

logger = logging.getLogger(__name__)


class AccessorReader:
    """Reads typed arrays from glTF accessors, honouring byteStride and normalization."""

    COMPONENT_TYPE_MAP = {
        5120: np.int8,    # BYTE
        5121: np.uint8,   # UNSIGNED_BYTE
        5122: np.int16,   # SHORT
        5123: np.uint16,  # UNSIGNED_SHORT
        5125: np.uint32,  # UNSIGNED_INT
        5126: np.float32,  # FLOAT
    }

    TYPE_SIZE_MAP = {
        'SCALAR': 1,
        'VEC2': 2,
        'VEC3': 3,
        'VEC4': 4,
        'MAT2': 4,
        'MAT3': 9,
        'MAT4': 16,
    }

    def __init__(self, gltf: GLTF2, base_dir: Optional[Path] = None):
        self.gltf = gltf
        self.base_dir = base_dir
        self._buffer_cache = {}

    def read_accessor(self, accessor_idx: int) -> np.ndarray:
        """
        Read data from accessor.

        Args:
            accessor_idx: Index of accessor

        Returns:
            Array of shape (count,) or (count, components). Normalized
            integer accessors are returned as float in [0, 1] / [-1, 1].

        Raises:
            GLBParseError: If accessor cannot be read
        """
        if accessor_idx is None or accessor_idx < 0:
            raise GLBParseError(f"Invalid accessor index: {accessor_idx}")
        if accessor_idx >= len(self.gltf.accessors):
            raise GLBParseError(f"Accessor index {accessor_idx} out of range")

        accessor = self.gltf.accessors[accessor_idx]
        dtype = self.COMPONENT_TYPE_MAP.get(accessor.componentType)
        if dtype is None:
            raise GLBParseError(f"Unknown component type: {accessor.componentType}")
        components = self.TYPE_SIZE_MAP.get(accessor.type)
        if components is None:
            raise GLBParseError(f"Unknown accessor type: {accessor.type}")

        if accessor.bufferView is None:
            return self._create_zero_data(accessor)

        buffer_view = self.gltf.bufferViews[accessor.bufferView]
        buffer_data = self._get_buffer_data(self.gltf.buffers[buffer_view.buffer])

        offset = (buffer_view.byteOffset or 0) + (accessor.byteOffset or 0)
        item_bytes = components * np.dtype(dtype).itemsize
        stride = buffer_view.byteStride or item_bytes

        try:
            if stride == item_bytes:
                raw = np.frombuffer(buffer_data, dtype=dtype,
                                    count=accessor.count * components, offset=offset)
            else:
                # interleaved view: gather each element from its stride slot
                rows = [
                    np.frombuffer(buffer_data, dtype=dtype, count=components, offset=offset + i * stride)
                    for i in range(accessor.count)
                ]
                raw = np.concatenate(rows) if rows else np.zeros(0, dtype=dtype)
        except ValueError as e:
            raise GLBParseError(f"Failed to read accessor {accessor_idx}: {e}")

        data = raw.copy()
        if accessor.normalized and dtype is not np.float32:
            data = data.astype(np.float64) / float(np.iinfo(dtype).max)
            if np.issubdtype(dtype, np.signedinteger):
                data = np.maximum(data, -1.0)

        if components > 1:
            data = data.reshape((accessor.count, components))

        logger.debug(f"Read accessor {accessor_idx}: shape={data.shape}, dtype={data.dtype}")
        return data

    def _get_buffer_data(self, buffer: Buffer) -> bytes:
        buffer_id = id(buffer)
        if buffer_id in self._buffer_cache:
            return self._buffer_cache[buffer_id]

        if buffer.uri is None:
            data = self.gltf.binary_blob()
            if data is None:
                raise GLBParseError("Binary buffer expected but not found")
        elif buffer.uri.startswith("data:"):
            data = self.gltf.get_data_from_buffer_uri(buffer.uri)
        else:
            path = (self.base_dir or Path(".")) / buffer.uri
            try:
                data = path.read_bytes()
            except OSError as e:
                raise GLBParseError(f"Cannot read external buffer {path}: {e}")

        self._buffer_cache[buffer_id] = data
        return data

    def _create_zero_data(self, accessor: Accessor) -> np.ndarray:
        dtype = self.COMPONENT_TYPE_MAP[accessor.componentType]
        components = self.TYPE_SIZE_MAP[accessor.type]
        shape = (accessor.count, components) if components > 1 else (accessor.count,)
        return np.zeros(shape, dtype=dtype)
