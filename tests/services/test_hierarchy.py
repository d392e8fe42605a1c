import pytest
import sqlite3

from hierarchy.errors import (
    CategoryExistsError,
    CategoryNotFoundError,
    CycleError,
    DescriptionTooLongError,
    HasChildrenError,
    MaxDepthExceededError,
    NameInvalidError,
    NameRequiredError,
    NameTooLongError,
    ParentNotFoundError,
    SelfParentError,
    ValidationError,
)
from services.hierarchy import HierarchyService
from tests.helpers import write_raw


def assert_tree_consistent(services):
    """Every row's level and path agree with its parent_id chain."""
    rows = {c.id: c for c in services.categories.find_all()}
    for category in rows.values():
        if category.parent_id is None:
            assert category.level == 0
            assert category.path == category.name
        else:
            parent = rows[category.parent_id]
            assert category.level == parent.level + 1
            assert category.path == f"{parent.path}/{category.name}"


def paths(services):
    return sorted(c.path for c in services.categories.find_all())


class TestCreate:
    """Tests for HierarchyService.create."""

    def test_create_root(self, services):
        """Test that a root gets level 0 and its own name as path."""
        category = services.hierarchy.create("Engine", "Engine parts")

        assert category.id is not None
        assert category.parent_id is None
        assert category.level == 0
        assert category.path == "Engine"
        assert category.description == "Engine parts"

    def test_create_child_computes_level_and_path(self, services):
        """Test that children sit one level below their parent."""
        engine = services.hierarchy.create("Engine")
        filters = services.hierarchy.create("Filters", parent_id=engine.id)
        oil = services.hierarchy.create("Oil Filters", parent_id=filters.id)

        assert filters.level == 1
        assert filters.path == "Engine/Filters"
        assert oil.level == 2
        assert oil.path == "Engine/Filters/Oil Filters"

    def test_create_strips_name(self, services):
        """Test that surrounding whitespace is not stored."""
        category = services.hierarchy.create("  Brakes  ")

        assert category.name == "Brakes"
        assert category.path == "Brakes"

    def test_create_missing_parent(self, services):
        """Test that an unknown parent is reported as such."""
        with pytest.raises(ParentNotFoundError) as exc_info:
            services.hierarchy.create("Filters", parent_id=9999)

        assert exc_info.value.details == {"parent_id": 9999}
        assert services.categories.count() == 0

    @pytest.mark.parametrize("name", ["", "   ", None])
    def test_create_name_required(self, services, name):
        """Test that empty names are rejected."""
        with pytest.raises(NameRequiredError):
            services.hierarchy.create(name)

    def test_create_name_too_long(self, services):
        """Test the 100 character name limit."""
        services.hierarchy.create("x" * 100)

        with pytest.raises(NameTooLongError) as exc_info:
            services.hierarchy.create("y" * 101)

        assert exc_info.value.details["length"] == 101
        assert exc_info.value.details["max_length"] == 100

    def test_create_name_with_separator(self, services):
        """Test that names cannot contain the path separator."""
        with pytest.raises(NameInvalidError):
            services.hierarchy.create("Oil/Air")

    def test_create_description_too_long(self, services):
        """Test the 500 character description limit."""
        services.hierarchy.create("Engine", "d" * 500)

        with pytest.raises(DescriptionTooLongError):
            services.hierarchy.create("Brakes", "d" * 501)

    def test_validation_errors_share_a_base(self, services):
        """Test that every field error is a ValidationError."""
        for name in ("", "x" * 101, "a/b"):
            with pytest.raises(ValidationError):
                services.hierarchy.create(name)

    def test_create_duplicate_sibling(self, services):
        """Test that sibling names are unique."""
        engine = services.hierarchy.create("Engine")
        services.hierarchy.create("Filters", parent_id=engine.id)

        with pytest.raises(CategoryExistsError) as exc_info:
            services.hierarchy.create("Filters", parent_id=engine.id)

        assert exc_info.value.details["path"] == "Engine/Filters"

    def test_create_duplicate_root(self, services):
        """Test that root names are unique too."""
        services.hierarchy.create("Engine")

        with pytest.raises(CategoryExistsError):
            services.hierarchy.create("Engine")

    def test_same_name_under_different_parents(self, services):
        """Test that only siblings need distinct names."""
        engine = services.hierarchy.create("Engine")
        brakes = services.hierarchy.create("Brakes")

        a = services.hierarchy.create("Sensors", parent_id=engine.id)
        b = services.hierarchy.create("Sensors", parent_id=brakes.id)

        assert a.path == "Engine/Sensors"
        assert b.path == "Brakes/Sensors"

    def test_create_max_depth(self, services):
        """Test that nothing is created below the maximum depth."""
        hierarchy = HierarchyService(
            services.db_manager, services.categories, max_depth=2
        )
        a = hierarchy.create("A")
        b = hierarchy.create("B", parent_id=a.id)
        c = hierarchy.create("C", parent_id=b.id)

        assert c.level == 2
        with pytest.raises(MaxDepthExceededError) as exc_info:
            hierarchy.create("D", parent_id=c.id)

        assert exc_info.value.details == {"level": 3, "max_depth": 2}

    def test_failed_create_leaves_no_open_transaction(self, services):
        """Test that a rejected create does not block the next write."""
        services.hierarchy.create("Engine")
        with pytest.raises(CategoryExistsError):
            services.hierarchy.create("Engine")

        services.hierarchy.create("Brakes")

        assert paths(services) == ["Brakes", "Engine"]


class TestUpdate:
    """Tests for HierarchyService.update."""

    def test_update_description(self, services, catalog):
        """Test that description changes leave structure alone."""
        engine = catalog["Engine"]

        updated = services.hierarchy.update(engine.id, "Engine", "Everything engine")

        assert updated.description == "Everything engine"
        assert updated.path == "Engine"
        assert updated.level == 0

    def test_rename_rewrites_descendant_paths(self, services, catalog):
        """Test that renaming carries the new name into every descendant path."""
        engine = catalog["Engine"]

        updated = services.hierarchy.update(engine.id, "Motor", "Engine parts")

        assert updated.name == "Motor"
        assert updated.path == "Motor"
        assert paths(services) == [
            "Brakes",
            "Brakes/Pads",
            "Motor",
            "Motor/Filters",
            "Motor/Filters/Oil Filters",
            "Motor/Pistons",
        ]
        assert_tree_consistent(services)

    def test_rename_to_sibling_name(self, services, catalog):
        """Test that a rename cannot collide with a sibling."""
        with pytest.raises(CategoryExistsError):
            services.hierarchy.update(catalog["Engine/Pistons"].id, "Filters")

        assert "Engine/Pistons" in paths(services)

    def test_update_validates_fields(self, services, catalog):
        """Test that update applies the create validation rules."""
        engine = catalog["Engine"]

        with pytest.raises(NameRequiredError):
            services.hierarchy.update(engine.id, "")
        with pytest.raises(DescriptionTooLongError):
            services.hierarchy.update(engine.id, "Engine", "d" * 501)

    def test_update_not_found(self, services):
        """Test updating a missing category."""
        with pytest.raises(CategoryNotFoundError):
            services.hierarchy.update(9999, "Anything")


class TestMove:
    """Tests for HierarchyService.move and validate_move."""

    def test_move_under_new_parent(self, services, catalog):
        """Test that the moved subtree follows its root."""
        filters = catalog["Engine/Filters"]
        brakes = catalog["Brakes"]

        moved = services.hierarchy.move(filters.id, brakes.id)

        assert moved.parent_id == brakes.id
        assert moved.level == 1
        assert moved.path == "Brakes/Filters"
        oil = services.categories.find(catalog["Engine/Filters/Oil Filters"].id)
        assert oil.path == "Brakes/Filters/Oil Filters"
        assert oil.level == 2
        assert_tree_consistent(services)

    def test_move_to_root(self, services, catalog):
        """Test that moving to None makes a root."""
        filters = catalog["Engine/Filters"]

        moved = services.hierarchy.move(filters.id, None)

        assert moved.parent_id is None
        assert moved.level == 0
        assert moved.path == "Filters"
        oil = services.categories.find(catalog["Engine/Filters/Oil Filters"].id)
        assert oil.path == "Filters/Oil Filters"
        assert oil.level == 1
        assert_tree_consistent(services)

    def test_move_deeper(self, services, catalog):
        """Test that levels shift down for the whole subtree."""
        brakes = catalog["Brakes"]
        pistons = catalog["Engine/Pistons"]

        services.hierarchy.move(brakes.id, pistons.id)

        pads = services.categories.find(catalog["Brakes/Pads"].id)
        assert pads.path == "Engine/Pistons/Brakes/Pads"
        assert pads.level == 3
        assert_tree_consistent(services)

    def test_move_descendants_rederivable_from_parents(self, services, catalog):
        """Test that a repair after a move finds nothing to fix."""
        services.hierarchy.move(catalog["Engine/Filters"].id, catalog["Brakes/Pads"].id)

        assert services.hierarchy.rebuild_paths() == 0

    def test_move_to_same_parent_is_noop(self, services, catalog):
        """Test that re-parenting under the current parent changes nothing."""
        filters = catalog["Engine/Filters"]

        moved = services.hierarchy.move(filters.id, catalog["Engine"].id)

        assert moved.path == "Engine/Filters"
        assert moved.updated_at == services.categories.find(filters.id).updated_at

    def test_move_self_parent(self, services, catalog):
        """Test that a category cannot be its own parent."""
        engine = catalog["Engine"]

        with pytest.raises(SelfParentError) as exc_info:
            services.hierarchy.move(engine.id, engine.id)

        assert isinstance(exc_info.value, CycleError)
        assert exc_info.value.code == "self_parent"

    @pytest.mark.parametrize("target", ["Engine/Filters", "Engine/Filters/Oil Filters"])
    def test_move_under_descendant(self, services, catalog, target):
        """Test that moving under any descendant is a cycle."""
        engine = catalog["Engine"]

        with pytest.raises(CycleError) as exc_info:
            services.hierarchy.move(engine.id, catalog[target].id)

        assert not isinstance(exc_info.value, SelfParentError)
        assert exc_info.value.details["new_parent_id"] == catalog[target].id
        assert_tree_consistent(services)

    def test_move_missing_category(self, services, catalog):
        with pytest.raises(CategoryNotFoundError):
            services.hierarchy.move(9999, catalog["Engine"].id)

    def test_move_missing_parent(self, services, catalog):
        with pytest.raises(ParentNotFoundError):
            services.hierarchy.move(catalog["Engine"].id, 9999)

    def test_move_counts_subtree_height_against_max_depth(self, services):
        """Test that the deepest moved descendant must fit under the maximum."""
        hierarchy = HierarchyService(
            services.db_manager, services.categories, max_depth=2
        )
        a = hierarchy.create("A")
        b = hierarchy.create("B", parent_id=a.id)
        x = hierarchy.create("X")
        hierarchy.create("Y", parent_id=x.id)

        with pytest.raises(MaxDepthExceededError) as exc_info:
            hierarchy.move(x.id, b.id)

        assert exc_info.value.details["level"] == 3
        assert hierarchy.move(x.id, a.id).path == "A/X"

    def test_move_name_collision_at_destination(self, services, catalog):
        """Test that the destination cannot already hold the same name."""
        brakes = catalog["Brakes"]
        services.hierarchy.create("Filters", parent_id=brakes.id)

        with pytest.raises(CategoryExistsError):
            services.hierarchy.move(catalog["Engine/Filters"].id, brakes.id)

    def test_validate_move_without_writing(self, services, catalog):
        """Test that validate_move only checks."""
        filters = catalog["Engine/Filters"]

        category = services.hierarchy.validate_move(filters.id, catalog["Brakes"].id)

        assert category.id == filters.id
        assert services.categories.find(filters.id).path == "Engine/Filters"

    def test_failed_rewrite_rolls_back(self, services, catalog, monkeypatch):
        """Test that a failure halfway through a subtree rewrite changes nothing."""
        original = services.categories.update_fields
        calls = []

        def failing_update(category_id, conn=None, **fields):
            calls.append(category_id)
            if len(calls) == 2:
                raise sqlite3.OperationalError("disk I/O error")
            return original(category_id, conn=conn, **fields)

        monkeypatch.setattr(services.categories, "update_fields", failing_update)
        with pytest.raises(sqlite3.OperationalError):
            services.hierarchy.move(catalog["Engine/Filters"].id, catalog["Brakes"].id)
        monkeypatch.undo()

        filters = services.categories.find(catalog["Engine/Filters"].id)
        assert filters.parent_id == catalog["Engine"].id
        assert filters.path == "Engine/Filters"
        assert "Engine/Filters/Oil Filters" in paths(services)
        assert_tree_consistent(services)


class TestDelete:
    """Tests for HierarchyService.delete."""

    def test_delete_leaf(self, services, catalog):
        pads = catalog["Brakes/Pads"]

        services.hierarchy.delete(pads.id)

        assert services.categories.find(pads.id) is None

    def test_delete_with_children_blocked(self, services, catalog):
        """Test that parents cannot be deleted while they have children."""
        engine = catalog["Engine"]

        with pytest.raises(HasChildrenError) as exc_info:
            services.hierarchy.delete(engine.id)

        assert exc_info.value.to_dict() == {
            "code": "has_children",
            "message": exc_info.value.message,
            "details": {"category_id": engine.id, "children_count": 2},
        }
        assert services.categories.find(engine.id) is not None

    def test_delete_after_children_removed(self, services, catalog):
        """Test that a parent becomes deletable once it is childless."""
        brakes = catalog["Brakes"]
        services.hierarchy.delete(catalog["Brakes/Pads"].id)

        services.hierarchy.delete(brakes.id)

        assert services.categories.find(brakes.id) is None

    def test_delete_not_found(self, services):
        with pytest.raises(CategoryNotFoundError):
            services.hierarchy.delete(9999)


class TestQueries:
    """Tests for the read side of HierarchyService."""

    def test_get_path_matches_materialized_path(self, services, catalog):
        """Test that the ancestor walk agrees with the stored path."""
        for category in catalog.values():
            chain = services.hierarchy.get_path(category.id)

            assert chain[-1].id == category.id
            assert chain[0].parent_id is None
            assert "/".join(c.name for c in chain) == category.path

    def test_get_path_not_found(self, services):
        with pytest.raises(CategoryNotFoundError):
            services.hierarchy.get_path(9999)

    def test_get_children(self, services, catalog):
        """Test that only direct children are returned."""
        children = services.hierarchy.get_children(catalog["Engine"].id)

        assert [c.name for c in children] == ["Filters", "Pistons"]

    def test_get_children_not_found(self, services):
        with pytest.raises(CategoryNotFoundError):
            services.hierarchy.get_children(9999)

    def test_get_roots_and_levels(self, services, catalog):
        assert [c.name for c in services.hierarchy.get_roots()] == ["Brakes", "Engine"]
        assert [c.name for c in services.hierarchy.get_by_level(2)] == ["Oil Filters"]

    def test_list_validates_paging(self, services, catalog):
        assert len(services.hierarchy.list(limit=2)) == 2
        assert services.hierarchy.count() == 6
        with pytest.raises(ValueError):
            services.hierarchy.list(limit=0)
        with pytest.raises(ValueError):
            services.hierarchy.list(offset=-1)

    def test_get_hierarchy_full(self, services, catalog):
        """Test that every root is returned with nested children."""
        nodes = services.hierarchy.get_hierarchy()

        assert [n.category.name for n in nodes] == ["Brakes", "Engine"]
        engine = nodes[1]
        assert [n.category.name for n in engine.children] == ["Filters", "Pistons"]
        assert engine.children[0].children[0].category.name == "Oil Filters"

    def test_get_hierarchy_from_root(self, services, catalog):
        nodes = services.hierarchy.get_hierarchy(root_id=catalog["Engine/Filters"].id)

        assert len(nodes) == 1
        assert nodes[0].category.path == "Engine/Filters"
        assert [n.category.name for n in nodes[0].children] == ["Oil Filters"]

    def test_get_hierarchy_max_depth(self, services, catalog):
        """Test that max_depth caps the levels below the starting nodes."""
        flat = services.hierarchy.get_hierarchy(max_depth=0)
        one = services.hierarchy.get_hierarchy(max_depth=1)

        assert all(n.children == [] for n in flat)
        engine = one[1]
        assert len(engine.children) == 2
        assert all(child.children == [] for child in engine.children)

    def test_get_hierarchy_to_dict(self, services, catalog):
        """Test the nested {category, children} representation."""
        data = services.hierarchy.get_hierarchy(root_id=catalog["Brakes"].id)[0].to_dict()

        assert data["category"]["name"] == "Brakes"
        assert "parent_id" not in data["category"]
        assert data["children"][0]["category"]["parent_id"] == catalog["Brakes"].id
        assert data["children"][0]["children"] == []

    def test_get_hierarchy_errors(self, services, catalog):
        with pytest.raises(CategoryNotFoundError):
            services.hierarchy.get_hierarchy(root_id=9999)
        with pytest.raises(ValueError):
            services.hierarchy.get_hierarchy(max_depth=-1)

    def test_search_ranks_substring_matches(self, services):
        """Test that 'eng' finds Engine and Engines, but not Suspension."""
        for name in ("Engine", "Engines", "Suspension"):
            services.hierarchy.create(name)

        results = services.hierarchy.search("eng")
        names = [r.category.name for r in results]

        assert names[:2] == ["Engine", "Engines"]
        assert "Suspension" not in names
        assert all(r.path for r in results)

    def test_search_attaches_ancestor_path(self, services, catalog):
        """Test that nested matches carry their breadcrumb."""
        results = services.hierarchy.search("oil")

        assert results[0].category.name == "Oil Filters"
        assert results[0].breadcrumb() == "Engine > Filters > Oil Filters"
        assert results[0].match_type == "name"
        assert "<mark>Oil</mark>" in results[0].highlighted


class TestRebuildPaths:
    """Tests for HierarchyService.rebuild_paths."""

    def test_rebuild_consistent_tree_is_noop(self, services, catalog):
        assert services.hierarchy.rebuild_paths() == 0

    def test_rebuild_repairs_damaged_rows(self, services, catalog, test_db):
        """Test that level and path are re-derived from parent links."""
        oil = catalog["Engine/Filters/Oil Filters"]
        pads = catalog["Brakes/Pads"]
        write_raw(test_db, oil.id, level=7, path="Wrong/Path")
        write_raw(test_db, pads.id, path="Pads")

        fixed = services.hierarchy.rebuild_paths()

        assert fixed == 2
        assert services.categories.find(oil.id).path == "Engine/Filters/Oil Filters"
        assert services.categories.find(oil.id).level == 2
        assert services.categories.find(pads.id).path == "Brakes/Pads"
        assert_tree_consistent(services)
        assert services.hierarchy.rebuild_paths() == 0

    def test_rebuild_handles_swapped_paths(self, services, catalog, test_db):
        """Test that two rows holding each other's paths are both fixed."""
        filters = catalog["Engine/Filters"]
        pistons = catalog["Engine/Pistons"]
        write_raw(test_db, filters.id, path="tmp")
        write_raw(test_db, pistons.id, path="Engine/Filters")
        write_raw(test_db, filters.id, path="Engine/Pistons")

        services.hierarchy.rebuild_paths()

        assert services.categories.find(filters.id).path == "Engine/Filters"
        assert services.categories.find(pistons.id).path == "Engine/Pistons"
