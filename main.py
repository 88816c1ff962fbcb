#!/usr/bin/env python
"""
Maintenance entry point for the RBS content service.
Run this periodically to prune old lesson status history and expired mirror entries.
"""
import logging

from rbs_site.config import Config
from rbs_site.kv_store_factory import create_kv_store
from rbs_site.lesson_status_repository import LessonStatusRepository
from rbs_site.local_disk_kv_store import LocalDiskKVStore
from rbs_site.mirror_store import MirrorStore

logger = logging.getLogger(__name__)


def main():
    """Run all maintenance tasks and return what was removed."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    config = Config()

    kv_store = create_kv_store(
        state_dir=config.state_dir,
        storage_type=config.kv_storage_type
    )
    status_repository = LessonStatusRepository(kv_store)
    removed_status = status_repository.cleanup_old(config.lesson_status_retention_days)
    logger.info(f"Lesson status cleanup: removed {removed_status} entries")

    mirror = MirrorStore(
        LocalDiskKVStore(state_dir=config.mirror_state_dir),
        version=config.mirror_version,
        max_size=config.mirror_max_size
    )
    removed_mirror = mirror.cleanup_expired()
    logger.info(f"Mirror cleanup: removed {removed_mirror} expired entries")

    return {"lesson_status": removed_status, "mirror": removed_mirror}


if __name__ == "__main__":
    main()
