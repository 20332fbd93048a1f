"""Tests for media_sync.core.progress"""

from media_sync.core.progress import PROGRESS_STEPS, SyncProgressBar


class TestSyncProgressBar:

    def test_update_never_moves_backwards(self):
        bar = SyncProgressBar()

        bar.update(0.30, "Processing artists...")
        bar.update(0.12, "Fetching tracks from server...")

        assert bar.completed == 0.30 * PROGRESS_STEPS
        assert bar.stage == "Fetching tracks from server..."

    def test_ratio_is_clamped(self):
        bar = SyncProgressBar()

        bar.update(1.7, "Complete")

        assert bar.completed == PROGRESS_STEPS

    def test_context_manager_drives_task(self):
        with SyncProgressBar(description="home") as bar:
            bar.update(0.5, "Loading existing data...")
            task = bar.progress.tasks[0]
            assert task.completed == 50
            assert task.fields["status"] == "Loading existing data..."

        assert not bar._started
