import logging
import os

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from core.bif_thumbnails import BifThumbnailSource

logger = logging.getLogger(__name__)

INDEX_FILENAME = "index-sd.bif"


class IndexWatcher(FileSystemEventHandler):
    """
    Watches Plex's media bundles for newly generated index files so items
    that were checked before Plex finished its preview pass aren't stuck
    with a cached "no thumbnails" result.
    """

    def __init__(self, source: BifThumbnailSource):
        super().__init__()
        self.source = source
        self.watch_path = os.path.join(source.data_path, "Media", "localhost")
        self.observer = Observer()

    def start(self) -> bool:
        if not os.path.isdir(self.watch_path):
            logger.warning("Index watch path does not exist: %s", self.watch_path)
            return False

        self.observer.schedule(self, path=self.watch_path, recursive=True)
        self.observer.start()
        logger.info("Watching %s for new thumbnail index files", self.watch_path)
        return True

    def stop(self) -> None:
        if self.observer.is_alive():
            self.observer.stop()
            self.observer.join(timeout=1.0)
            if self.observer.is_alive():
                logger.warning("Index watcher thread did not stop gracefully.")
        logger.debug("Index watcher stopped.")

    def dispatch(self, event):
        if event.is_directory:
            return

        if event.event_type in ("created", "modified"):
            file_path = event.src_path
        elif event.event_type == "moved":
            # Plex writes the index under a temporary name and renames it.
            file_path = event.dest_path
        else:
            return

        if os.path.basename(file_path) != INDEX_FILENAME:
            return

        try:
            self.source.index_file_appeared(file_path)
        except Exception as e:  # why: watchdog callbacks run on the observer thread; an error must not kill it
            logger.error("Index watcher: error handling %s: %s", file_path, e, exc_info=True)
