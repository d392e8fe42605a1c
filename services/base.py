"""Base services container for dependency injection."""

from config import Config
from db.manager import DatabaseManager


class Services:
    """Container for the category store and hierarchy engine.

    Args:
        config: Application configuration object.
        db_manager: Optional database manager for testing. If provided, the
            config's database settings are ignored.
    """

    def __init__(self, config: Config, db_manager=None):
        self.config = config
        self.db_manager = db_manager or DatabaseManager(config)

        # Lazy import to avoid circular dependencies
        from services.categories import CategoryService
        from services.hierarchy import HierarchyService

        self.categories = CategoryService(self.db_manager)
        self.hierarchy = HierarchyService(
            self.db_manager,
            self.categories,
            max_depth=config.max_depth,
            separator=config.path_separator,
            search_config=config.search_config(),
        )
