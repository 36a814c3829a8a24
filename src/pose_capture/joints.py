"""Canonical skeleton joints and pose frame structures."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import IntEnum
from types import MappingProxyType
from typing import Iterable, Mapping, Protocol, Sequence

import numpy as np


class JointIndex(IntEnum):
    """Joints retained from the tracked skeleton."""

    HIPS = 0
    LEFT_HAND = 1
    RIGHT_HAND = 2
    LEFT_FOOT = 3
    RIGHT_FOOT = 4
    LEFT_KNEE = 5
    RIGHT_KNEE = 6
    LEFT_SHOULDER = 7
    RIGHT_SHOULDER = 8
    HEAD = 9


JOINT_NAME_TO_INDEX: Mapping[str, JointIndex] = MappingProxyType(
    {
        "hips_joint": JointIndex.HIPS,
        "left_hand_joint": JointIndex.LEFT_HAND,
        "right_hand_joint": JointIndex.RIGHT_HAND,
        "left_foot_joint": JointIndex.LEFT_FOOT,
        "right_foot_joint": JointIndex.RIGHT_FOOT,
        "left_leg_joint": JointIndex.LEFT_KNEE,
        "right_leg_joint": JointIndex.RIGHT_KNEE,
        "left_shoulder_1_joint": JointIndex.LEFT_SHOULDER,
        "right_shoulder_1_joint": JointIndex.RIGHT_SHOULDER,
        "head_joint": JointIndex.HEAD,
    }
)
"""Tracker joint names mapped onto :class:`JointIndex`."""


def resolve_joint_name(name: str) -> JointIndex | None:
    return JOINT_NAME_TO_INDEX.get(name)


@dataclass(frozen=True, slots=True)
class JointPosition:
    """Joint position in meters."""

    x: float
    y: float
    z: float

    def __post_init__(self) -> None:
        for field_name in ("x", "y", "z"):
            value = float(getattr(self, field_name))
            if not math.isfinite(value):
                raise ValueError("Joint coordinates must be finite")
            object.__setattr__(self, field_name, value)

    def as_array(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z], dtype=np.float64)

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "z": self.z}


JointMap = Mapping[JointIndex, JointPosition]


def _joint_map_to_dict(joints: JointMap) -> dict[str, dict[str, float]]:
    return {str(int(index)): joints[index].to_dict() for index in sorted(joints)}


@dataclass(frozen=True, slots=True)
class PoseFrame:
    """One timestamped snapshot of resolved joints for a tracked body."""

    frame_index: int
    timestamp: float
    world_joints: JointMap
    wall_joints: JointMap

    def to_dict(self) -> dict[str, object]:
        return {
            "frameIndex": int(self.frame_index),
            "timestamp": float(self.timestamp),
            "worldJoints": _joint_map_to_dict(self.world_joints),
            "wallJoints": _joint_map_to_dict(self.wall_joints),
        }


@dataclass(frozen=True, slots=True)
class TrackedBody:
    """A tracked body update as delivered by the tracking subsystem.

    ``root_transform`` is the 4x4 body-to-world matrix and
    ``joint_model_transforms`` holds one 4x4 body-space matrix per entry of
    ``joint_names``. Translations live in the last column.
    """

    root_transform: np.ndarray
    joint_names: Sequence[str]
    joint_model_transforms: np.ndarray

    def __post_init__(self) -> None:
        root = np.asarray(self.root_transform, dtype=np.float64)
        if root.shape != (4, 4):
            raise ValueError("Root transform must be a 4x4 matrix")
        transforms = np.asarray(self.joint_model_transforms, dtype=np.float64)
        if transforms.size == 0:
            transforms = transforms.reshape(0, 4, 4)
        if transforms.ndim != 3 or transforms.shape[1:] != (4, 4):
            raise ValueError("Joint transforms must be an array of 4x4 matrices")
        if transforms.shape[0] != len(self.joint_names):
            raise ValueError("Joint names and transforms must have equal length")
        object.__setattr__(self, "root_transform", root)
        object.__setattr__(self, "joint_model_transforms", transforms)
        object.__setattr__(self, "joint_names", tuple(self.joint_names))


def project_world_joints(body: TrackedBody) -> dict[JointIndex, JointPosition]:
    """Project the body's recognised joints into world space.

    Unrecognised joint names are dropped.
    """

    world = np.matmul(body.root_transform, body.joint_model_transforms)
    joints: dict[JointIndex, JointPosition] = {}
    for position, name in enumerate(body.joint_names):
        index = resolve_joint_name(name)
        if index is None:
            continue
        x, y, z = world[position, :3, 3]
        if not (math.isfinite(x) and math.isfinite(y) and math.isfinite(z)):
            continue
        joints[index] = JointPosition(float(x), float(y), float(z))
    return joints


class CoordinateCalibration(Protocol):
    """Maps world-space joints onto a secondary coordinate frame."""

    def apply(self, joints: JointMap) -> dict[JointIndex, JointPosition]:
        ...


class IdentityCalibration:
    """Calibration used when no external reference was captured."""

    def apply(self, joints: JointMap) -> dict[JointIndex, JointPosition]:
        return dict(joints)


class WallCalibration:
    """Express joints relative to a calibrated wall origin."""

    def __init__(self, origin: Iterable[float]) -> None:
        values = np.asarray(list(origin), dtype=np.float64)
        if values.shape != (3,) or not np.all(np.isfinite(values)):
            raise ValueError("Wall origin must be three finite coordinates")
        self.origin = values

    def apply(self, joints: JointMap) -> dict[JointIndex, JointPosition]:
        calibrated: dict[JointIndex, JointPosition] = {}
        for index, position in joints.items():
            x, y, z = position.as_array() - self.origin
            calibrated[index] = JointPosition(float(x), float(y), float(z))
        return calibrated


def build_pose_document(
    frames: Iterable[PoseFrame],
    *,
    created_at_unix: int,
    video_file_name: str | None,
) -> dict[str, object]:
    """Return the skeleton recording payload written next to the video."""

    return {
        "createdAtUnix": int(created_at_unix),
        "videoFileName": video_file_name,
        "frames": [frame.to_dict() for frame in frames],
    }


__all__ = [
    "CoordinateCalibration",
    "IdentityCalibration",
    "JOINT_NAME_TO_INDEX",
    "JointIndex",
    "JointPosition",
    "PoseFrame",
    "TrackedBody",
    "WallCalibration",
    "build_pose_document",
    "project_world_joints",
    "resolve_joint_name",
]
