#!/usr/bin/env python3

import sys
import json
from pathlib import Path

import yaml

from config import get_seed_file
from hierarchy.errors import CategoryExistsError, HierarchyError
from logger import get_logger
from tools.categories import check_integrity, export_hierarchy

logger = get_logger()


def _fail(message):
    logger.error(message)
    sys.exit(1)


def _log_category(category, indent=""):
    logger.info(f"{indent}ID: {category.id}")
    logger.info(f"{indent}Name: {category.name}")
    logger.info(f"{indent}Path: {category.path}")
    logger.info(f"{indent}Level: {category.level}")
    if category.description:
        logger.info(f"{indent}Description: {category.description}")
    if category.parent_id is not None:
        logger.info(f"{indent}Parent ID: {category.parent_id}")


def cmd_list(args, services):
    """List categories ordered by path."""
    if args.limit:
        categories = services.hierarchy.list(limit=args.limit, offset=args.offset)
    else:
        categories = services.categories.find_all()

    if not categories:
        logger.info("No categories found.")
        return

    logger.info("\nCategories:")
    logger.info("=" * 80)
    for category in categories:
        logger.info(
            f"{category.id:>5}  {category.path}  "
            f"(level {category.level}, {category.children_count} subcategories)"
        )
    logger.info("=" * 80)
    logger.info(f"Showing {len(categories)} of {services.hierarchy.count()} categories")


def cmd_tree(args, services):
    """Print the category tree."""
    try:
        nodes = services.hierarchy.get_hierarchy(
            root_id=args.root_id, max_depth=args.max_depth
        )
    except (HierarchyError, ValueError) as e:
        _fail(f"Error: {e}")

    if not nodes:
        logger.info("No categories found.")
        return

    def show(node, depth):
        category = node.category
        suffix = f" ({category.children_count})" if category.children_count else ""
        logger.info(f"{'  ' * depth}{category.name} [ID: {category.id}]{suffix}")
        for child in node.children:
            show(child, depth + 1)

    for node in nodes:
        show(node, 0)


def cmd_create(args, services):
    """Create a new category."""
    try:
        category = services.hierarchy.create(
            args.name, args.description, args.parent_id
        )
    except HierarchyError as e:
        _fail(f"Error creating category: {e}")

    logger.info(f"\n✓ Category created successfully with ID: {category.id}")
    _log_category(category, indent="  ")


def cmd_update(args, services):
    """Rename a category or change its description."""
    try:
        current = services.hierarchy.get(args.category_id)
        description = (
            args.description if args.description is not None else current.description
        )
        category = services.hierarchy.update(
            args.category_id, args.name or current.name, description
        )
    except HierarchyError as e:
        _fail(f"Error updating category: {e}")

    logger.info(f"✓ Category {category.id} updated")
    _log_category(category, indent="  ")


def cmd_move(args, services):
    """Move a category and its subtree under a new parent."""
    try:
        category = services.hierarchy.move(args.category_id, args.parent_id)
    except HierarchyError as e:
        _fail(f"Error moving category: {e}")

    logger.info(f"✓ Category {category.id} is now '{category.path}'")


def cmd_delete(args, services):
    """Delete a childless category by ID."""
    try:
        category = services.hierarchy.get(args.category_id)
    except HierarchyError as e:
        _fail(str(e))

    logger.info("\nCategory to delete:")
    _log_category(category, indent="  ")

    if not args.yes:
        confirm = (
            input("\nAre you sure you want to delete this category? (yes/no): ")
            .strip()
            .lower()
        )
        if confirm != "yes":
            logger.info("Deletion cancelled.")
            return

    try:
        services.hierarchy.delete(args.category_id)
    except HierarchyError as e:
        _fail(f"Error deleting category: {e}")

    logger.info(f"✓ Category '{category.path}' deleted successfully.")


def cmd_path(args, services):
    """Show the ancestors of a category."""
    try:
        chain = services.hierarchy.get_path(args.category_id)
    except HierarchyError as e:
        _fail(str(e))

    logger.info(" > ".join(category.name for category in chain))
    for category in chain:
        logger.info(f"  {'  ' * category.level}{category.name} [ID: {category.id}]")


def cmd_search(args, services):
    """Search categories by name, description and path."""
    config = services.hierarchy.search_config.merged(max_results=args.limit)
    results = services.hierarchy.search(args.query, config)

    if not results:
        logger.info(f"No categories match '{args.query}'.")
        return

    logger.info(f"\nResults for '{args.query}':")
    logger.info("=" * 80)
    for result in results:
        logger.info(
            f"{result.score:.3f}  {result.breadcrumb()}  "
            f"[ID: {result.category.id}, matched {result.match_type}]"
        )
    logger.info(f"\nTotal results: {len(results)}")


def _seed_nodes(services, entries, parent, counts):
    for entry in entries or []:
        name = (entry.get("name") or "").strip()
        if not name:
            logger.warning("Skipping category with no name")
            continue

        parent_id = parent.id if parent else None
        path = f"{parent.path}{services.hierarchy.separator}{name}" if parent else name
        category = services.categories.find_by_path(path)
        if category:
            logger.info(f"⊘ Skipped '{path}' (already exists)")
            counts["skipped"] += 1
        else:
            try:
                category = services.hierarchy.create(
                    name, entry.get("description"), parent_id
                )
            except CategoryExistsError:
                counts["skipped"] += 1
                continue
            except HierarchyError as e:
                logger.error(f"Error creating category '{path}': {e}")
                counts["failed"] += 1
                continue
            logger.info(f"✓ Created '{category.path}' (ID: {category.id})")
            counts["created"] += 1

        _seed_nodes(services, entry.get("children"), category, counts)


def cmd_seed(args, services):
    """Seed categories from a YAML file."""
    seed_file = Path(args.file) if args.file else get_seed_file()

    if not seed_file.exists():
        _fail(f"Seed file not found: {seed_file}")

    try:
        with open(seed_file, "r") as f:
            entries = yaml.safe_load(f)
    except yaml.YAMLError as e:
        _fail(f"Error parsing YAML file: {e}")

    if isinstance(entries, dict):
        entries = entries.get("categories", [])

    logger.info(f"\nSeeding categories from {seed_file}")
    logger.info("=" * 80)

    counts = {"created": 0, "skipped": 0, "failed": 0}
    _seed_nodes(services, entries, None, counts)

    logger.info("=" * 80)
    logger.info("\nSeeding complete!")
    logger.info(f"Created: {counts['created']}")
    logger.info(f"Skipped: {counts['skipped']}")
    logger.info(f"Failed: {counts['failed']}")


def cmd_check(args, services):
    """Check stored categories against the hierarchy invariants."""
    report = check_integrity(services)

    if report["ok"]:
        logger.info(f"✓ {report['checked']} categories checked, no problems found.")
        return

    logger.info(f"Found {len(report['issues'])} problem(s) in {report['checked']} categories:")
    for issue in report["issues"]:
        logger.info(
            f"  [{issue['problem']}] category {issue['category_id']} '{issue['path']}'"
            f" expected={issue['expected']!r} actual={issue['actual']!r}"
        )
    logger.info("Run 'python -m cli categories repair' to fix level and path problems.")
    sys.exit(1)


def cmd_repair(args, services):
    """Re-derive level and path of every category from parent links."""
    try:
        fixed = services.hierarchy.rebuild_paths()
    except HierarchyError as e:
        _fail(f"Error repairing categories: {e}")

    if fixed:
        logger.info(f"✓ Repaired {fixed} category(ies).")
    else:
        logger.info("Nothing to repair.")


def cmd_export(args, services):
    """Export the category tree as JSON."""
    try:
        data = export_hierarchy(services, args.root_id, args.max_depth)
    except (HierarchyError, ValueError) as e:
        _fail(f"Error exporting categories: {e}")

    output = json.dumps(data, indent=2)
    if args.output:
        Path(args.output).write_text(output)
        logger.info(f"Exported {data['count']} categories to {args.output}")
    else:
        print(output)


def setup_parser(subparsers):
    """Setup categories subcommand parser.

    Args:
        subparsers: The subparsers object from the main CLI
    """
    parser = subparsers.add_parser(
        "categories",
        help="Manage categories",
        description="Create, move, search and maintain the category hierarchy",
    )

    categories_subparsers = parser.add_subparsers(
        title="subcommands",
        description="Available category commands",
        dest="subcommand",
        required=True,
    )

    # categories list
    list_parser = categories_subparsers.add_parser("list", help="List categories")
    list_parser.add_argument("--limit", type=int, help="Page size")
    list_parser.add_argument("--offset", type=int, default=0, help="Page offset")
    list_parser.set_defaults(func=cmd_list)

    # categories tree
    tree_parser = categories_subparsers.add_parser("tree", help="Show the category tree")
    tree_parser.add_argument("--root-id", type=int, help="Start from this category")
    tree_parser.add_argument("--max-depth", type=int, help="Levels to show")
    tree_parser.set_defaults(func=cmd_tree)

    # categories create
    create_parser = categories_subparsers.add_parser("create", help="Create a category")
    create_parser.add_argument("name", help="Category name")
    create_parser.add_argument("--description", help="Category description")
    create_parser.add_argument("--parent-id", type=int, help="Parent category ID")
    create_parser.set_defaults(func=cmd_create)

    # categories update
    update_parser = categories_subparsers.add_parser(
        "update", help="Rename a category or change its description"
    )
    update_parser.add_argument("category_id", type=int, help="ID of the category")
    update_parser.add_argument("--name", help="New name")
    update_parser.add_argument("--description", help="New description")
    update_parser.set_defaults(func=cmd_update)

    # categories move
    move_parser = categories_subparsers.add_parser(
        "move", help="Move a category and its subcategories"
    )
    move_parser.add_argument("category_id", type=int, help="ID of the category to move")
    move_parser.add_argument(
        "--parent-id", type=int, help="New parent ID (omit to make it a root)"
    )
    move_parser.set_defaults(func=cmd_move)

    # categories delete
    delete_parser = categories_subparsers.add_parser(
        "delete", help="Delete a category by ID"
    )
    delete_parser.add_argument(
        "category_id",
        type=int,
        help="ID of the category to delete",
    )
    delete_parser.add_argument("--yes", action="store_true", help="Skip confirmation")
    delete_parser.set_defaults(func=cmd_delete)

    # categories path
    path_parser = categories_subparsers.add_parser(
        "path", help="Show the ancestors of a category"
    )
    path_parser.add_argument("category_id", type=int, help="ID of the category")
    path_parser.set_defaults(func=cmd_path)

    # categories search
    search_parser = categories_subparsers.add_parser("search", help="Search categories")
    search_parser.add_argument("query", help="Search text")
    search_parser.add_argument("--limit", type=int, help="Maximum number of results")
    search_parser.set_defaults(func=cmd_search)

    # categories seed
    seed_parser = categories_subparsers.add_parser(
        "seed", help="Seed categories from a YAML file"
    )
    seed_parser.add_argument("--file", help="Seed file (defaults to the bundled one)")
    seed_parser.set_defaults(func=cmd_seed)

    # categories check
    check_parser = categories_subparsers.add_parser(
        "check", help="Check level, path and parent consistency"
    )
    check_parser.set_defaults(func=cmd_check)

    # categories repair
    repair_parser = categories_subparsers.add_parser(
        "repair", help="Rebuild level and path from parent links"
    )
    repair_parser.set_defaults(func=cmd_repair)

    # categories export
    export_parser = categories_subparsers.add_parser(
        "export", help="Export the category tree as JSON"
    )
    export_parser.add_argument("--root-id", type=int, help="Export only this subtree")
    export_parser.add_argument("--max-depth", type=int, help="Levels to export")
    export_parser.add_argument("--output", help="Write to this file instead of stdout")
    export_parser.set_defaults(func=cmd_export)
