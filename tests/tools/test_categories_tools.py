from tests.helpers import write_raw
from tools.categories import check_integrity, export_hierarchy


def problems(report):
    return sorted((issue["category_id"], issue["problem"]) for issue in report["issues"])


class TestCheckIntegrity:
    """Tests for check_integrity."""

    def test_clean_tree(self, services, catalog):
        report = check_integrity(services)

        assert report == {"checked": 6, "ok": True, "issues": []}

    def test_empty_database(self, services):
        assert check_integrity(services)["ok"] is True

    def test_level_and_path_drift(self, services, catalog, test_db):
        oil = catalog["Engine/Filters/Oil Filters"]
        write_raw(test_db, oil.id, level=5, path="Oil Filters")

        report = check_integrity(services)

        assert not report["ok"]
        assert problems(report) == [(oil.id, "level"), (oil.id, "path")]
        path_issue = [i for i in report["issues"] if i["problem"] == "path"][0]
        assert path_issue["expected"] == "Engine/Filters/Oil Filters"
        assert path_issue["actual"] == "Oil Filters"

    def test_cycle(self, services, catalog, test_db):
        """Test that looping parent links are reported, not followed forever."""
        engine = catalog["Engine"]
        write_raw(test_db, engine.id, parent_id=catalog["Engine/Filters/Oil Filters"].id)

        report = check_integrity(services)

        looping = {i["category_id"] for i in report["issues"] if i["problem"] == "cycle"}
        assert looping == {
            engine.id,
            catalog["Engine/Filters"].id,
            catalog["Engine/Filters/Oil Filters"].id,
            catalog["Engine/Pistons"].id,
        }
        assert not any(
            i["category_id"] == catalog["Brakes/Pads"].id for i in report["issues"]
        )

    def test_too_deep(self, services, catalog):
        services.hierarchy.max_depth = 1

        report = check_integrity(services)

        assert problems(report) == [
            (catalog["Engine/Filters/Oil Filters"].id, "too_deep")
        ]

    def test_duplicate_sibling(self, services, catalog, test_db):
        pistons = catalog["Engine/Pistons"]
        write_raw(test_db, pistons.id, name="Filters")

        report = check_integrity(services)

        assert (pistons.id, "duplicate_sibling") in problems(report)

    def test_repair_clears_drift(self, services, catalog, test_db):
        write_raw(test_db, catalog["Brakes/Pads"].id, level=3, path="Pads")

        services.hierarchy.rebuild_paths()

        assert check_integrity(services)["ok"] is True


class TestExportHierarchy:
    """Tests for export_hierarchy."""

    def test_export_everything(self, services, catalog):
        data = export_hierarchy(services)

        assert data["separator"] == "/"
        assert data["count"] == 6
        assert [n["category"]["name"] for n in data["categories"]] == ["Brakes", "Engine"]

    def test_export_subtree(self, services, catalog):
        data = export_hierarchy(services, root_id=catalog["Engine"].id, max_depth=1)

        assert data["count"] == 3
        engine = data["categories"][0]
        assert [c["category"]["name"] for c in engine["children"]] == ["Filters", "Pistons"]
        assert engine["children"][0]["children"] == []
