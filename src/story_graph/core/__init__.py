"""Pure graph state, diff, placement, and interaction logic."""

from story_graph.core.graph_diff import diff_graph_elements
from story_graph.core.scene_sync import SceneSynchronizer, SyncReport
from story_graph.core.snapshot_store import ChapterSnapshotStore
from story_graph.core.state_reconstruction import ReconstructedState, reconstruct_chapter_state

__all__ = [
    "ChapterSnapshotStore",
    "ReconstructedState",
    "SceneSynchronizer",
    "SyncReport",
    "diff_graph_elements",
    "reconstruct_chapter_state",
]
