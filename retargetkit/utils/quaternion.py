"""
Quaternion and transform helpers.

Quaternions are in scalar-last format: [x, y, z, w], the glTF convention.
Functions accept a single quaternion (4,) or a batch (N, 4) where noted.
"""

import numpy as np

from ..common import EPSILON

IDENTITY_QUAT = np.array([0.0, 0.0, 0.0, 1.0])


def quat_identity():
    """Return a fresh identity quaternion."""
    return IDENTITY_QUAT.copy()


def mulQuat(qa, qb):
    """
    Multiply two quaternions (Hamilton product, qa applied after qb).
    Works on single quaternions or broadcastable batches.

    Args:
        qa: First quaternion [x, y, z, w], shape (4,) or (N, 4)
        qb: Second quaternion [x, y, z, w], shape (4,) or (N, 4)

    Returns:
        Product quaternion with the broadcast shape
    """
    qa = np.asarray(qa, dtype=float)
    qb = np.asarray(qb, dtype=float)
    x1, y1, z1, w1 = qa[..., 0], qa[..., 1], qa[..., 2], qa[..., 3]
    x2, y2, z2, w2 = qb[..., 0], qb[..., 1], qb[..., 2], qb[..., 3]

    w = w1*w2 - x1*x2 - y1*y2 - z1*z2
    x = w1*x2 + x1*w2 + y1*z2 - z1*y2
    y = w1*y2 - x1*z2 + y1*w2 + z1*x2
    z = w1*z2 + x1*y2 - y1*x2 + z1*w2

    return np.stack([x, y, z, w], axis=-1)


def normalize_quat(q):
    """Normalize a quaternion or batch; zero-length input becomes identity."""
    q = np.asarray(q, dtype=float)
    norm = np.linalg.norm(q, axis=-1, keepdims=True)
    safe = np.where(norm > EPSILON, norm, 1.0)
    out = q / safe
    if q.ndim == 1:
        return out if norm[0] > EPSILON else quat_identity()
    out[norm[:, 0] <= EPSILON] = IDENTITY_QUAT
    return out


def inverse_quat(q):
    """Inverse of a quaternion (conjugate over squared norm)."""
    q = np.asarray(q, dtype=float)
    conj = q * np.array([-1.0, -1.0, -1.0, 1.0])
    norm_sq = np.sum(q * q, axis=-1, keepdims=True)
    return conj / np.where(norm_sq > EPSILON, norm_sq, 1.0)


def quat2mat(quat):
    """
    Convert a quaternion to a 3x3 rotation matrix.

    Args:
        quat: Quaternion [x, y, z, w]

    Returns:
        3x3 rotation matrix
    """
    x, y, z, w = normalize_quat(quat)

    xx, yy, zz = x*x, y*y, z*z
    xy, xz, yz = x*y, x*z, y*z
    wx, wy, wz = w*x, w*y, w*z

    return np.array([
        [1 - 2*(yy + zz), 2*(xy - wz), 2*(xz + wy)],
        [2*(xy + wz), 1 - 2*(xx + zz), 2*(yz - wx)],
        [2*(xz - wy), 2*(yz + wx), 1 - 2*(xx + yy)]
    ])


def mat2quat(mat):
    """
    Convert a 3x3 rotation matrix to a quaternion.

    Args:
        mat: 3x3 rotation matrix (orthonormal)

    Returns:
        Quaternion [x, y, z, w]
    """
    m = np.asarray(mat, dtype=float)
    trace = m[0, 0] + m[1, 1] + m[2, 2]

    if trace > 0:
        s = 0.5 / np.sqrt(trace + 1.0)
        w = 0.25 / s
        x = (m[2, 1] - m[1, 2]) * s
        y = (m[0, 2] - m[2, 0]) * s
        z = (m[1, 0] - m[0, 1]) * s
    elif m[0, 0] > m[1, 1] and m[0, 0] > m[2, 2]:
        s = 2.0 * np.sqrt(1.0 + m[0, 0] - m[1, 1] - m[2, 2])
        w = (m[2, 1] - m[1, 2]) / s
        x = 0.25 * s
        y = (m[0, 1] + m[1, 0]) / s
        z = (m[0, 2] + m[2, 0]) / s
    elif m[1, 1] > m[2, 2]:
        s = 2.0 * np.sqrt(1.0 + m[1, 1] - m[0, 0] - m[2, 2])
        w = (m[0, 2] - m[2, 0]) / s
        x = (m[0, 1] + m[1, 0]) / s
        y = 0.25 * s
        z = (m[1, 2] + m[2, 1]) / s
    else:
        s = 2.0 * np.sqrt(1.0 + m[2, 2] - m[0, 0] - m[1, 1])
        w = (m[1, 0] - m[0, 1]) / s
        x = (m[0, 2] + m[2, 0]) / s
        y = (m[1, 2] + m[2, 1]) / s
        z = 0.25 * s

    return normalize_quat(np.array([x, y, z, w]))


def rotate_vector(q, v):
    """Rotate a 3-vector (or an (N, 3) batch) by quaternion q."""
    return np.asarray(v, dtype=float) @ quat2mat(q).T


def quat_from_axis_angle(axis, angle):
    """
    Build a quaternion from a rotation axis and an angle in radians.
    """
    axis = np.asarray(axis, dtype=float)
    norm = np.linalg.norm(axis)
    if norm < EPSILON:
        return quat_identity()
    axis = axis / norm
    half = angle / 2.0
    return np.array([*(axis * np.sin(half)), np.cos(half)])


def quat_between_vectors(v_from, v_to):
    """
    Minimum-arc rotation taking direction v_from onto direction v_to.

    Anti-parallel inputs rotate 180 degrees about an arbitrary
    perpendicular axis.
    """
    u = normalize_vector(v_from)
    v = normalize_vector(v_to)
    r = float(np.dot(u, v)) + 1.0

    if r < EPSILON:
        if abs(u[0]) > abs(u[2]):
            q = np.array([-u[1], u[0], 0.0, 0.0])
        else:
            q = np.array([0.0, -u[2], u[1], 0.0])
    else:
        c = np.cross(u, v)
        q = np.array([c[0], c[1], c[2], r])

    return normalize_quat(q)


def quat_slerp(qa, qb, t):
    """Spherical interpolation between qa and qb along the shortest arc."""
    qa = normalize_quat(qa)
    qb = normalize_quat(qb)
    dot = float(np.dot(qa, qb))
    if dot < 0.0:
        qb = -qb
        dot = -dot
    if dot > 0.9995:
        return normalize_quat(qa + t * (qb - qa))

    theta = np.arccos(np.clip(dot, -1.0, 1.0))
    sin_theta = np.sin(theta)
    wa = np.sin((1.0 - t) * theta) / sin_theta
    wb = np.sin(t * theta) / sin_theta
    return wa * qa + wb * qb


def quat_angle(qa, qb) -> float:
    """Angle in radians between two orientations."""
    dot = abs(float(np.dot(normalize_quat(qa), normalize_quat(qb))))
    return 2.0 * np.arccos(np.clip(dot, -1.0, 1.0))


def normalize_vector(v):
    """Unit vector along v; zero-length input returns zeros."""
    v = np.asarray(v, dtype=float)
    norm = np.linalg.norm(v)
    if norm < EPSILON:
        return np.zeros_like(v)
    return v / norm


def angle_between(v1, v2) -> float:
    """Angle in degrees between two direction vectors."""
    a = normalize_vector(v1)
    b = normalize_vector(v2)
    return float(np.degrees(np.arccos(np.clip(np.dot(a, b), -1.0, 1.0))))


def compose_matrix(translation, rotation, scale):
    """
    Build a 4x4 transform from translation, quaternion and scale (T * R * S).
    """
    H = np.eye(4)
    H[:3, :3] = quat2mat(rotation) @ np.diag(np.asarray(scale, dtype=float))
    H[:3, 3] = translation
    return H


def decompose_matrix(H):
    """
    Split a 4x4 transform into translation, quaternion and scale.

    Returns:
        Tuple of (translation [x, y, z], quaternion [x, y, z, w], scale [x, y, z])
    """
    H = np.asarray(H, dtype=float)
    translation = H[:3, 3].copy()
    basis = H[:3, :3]
    scale = np.linalg.norm(basis, axis=0)
    if np.linalg.det(basis) < 0:
        scale[0] = -scale[0]
    safe = np.where(np.abs(scale) > EPSILON, scale, 1.0)
    rotation = mat2quat(basis / safe)
    return translation, rotation, scale
