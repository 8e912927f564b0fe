"""Post-estimation fusion stages."""

from pocket_pdr.fusion.trajectory import TrajectoryFilter

__all__ = ["TrajectoryFilter"]
