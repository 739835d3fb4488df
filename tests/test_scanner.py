from __future__ import annotations

from pathlib import Path

import pytest

from portfolio_ingest.errors import ScanRootError
from portfolio_ingest.scanner import (
    classify_extension,
    classify_stage,
    list_projects,
    parse_project_folder,
    scan_assets,
    slugify,
)
from tests.fakes import make_settings


def test_after_photos_folder_classifies_images_as_after(asset_tree, settings):
    root = asset_tree(
        {
            "kitchen/104 - Luxe Revival - Kitchen/104 - After Photos - Kitchen/IMG_1.jpg": 10,
            "kitchen/104 - Luxe Revival - Kitchen/104 - After Photos - Kitchen/IMG_2.PNG": 20,
        }
    )

    result = scan_assets(root, settings=settings)

    assert [f.filename for f in result.files] == ["IMG_1.jpg", "IMG_2.PNG"]
    first = result.files[0]
    assert first.stage == "after"
    assert first.kind == "image"
    assert first.project_id == "104"
    assert first.project_slug == "104-luxe-revival"
    assert first.category == "kitchen"
    assert first.subcategory is None
    assert first.size == 10
    assert first.local_path.is_absolute()
    assert first.storage_path == "projects/104-luxe-revival/kitchen/photos/after/IMG_1.jpg"
    assert result.files[1].extension == ".png"
    assert result.stats.images == 2
    assert result.stats.total_bytes == 30


def test_subcategory_layer_for_adu_addition(asset_tree, settings):
    root = asset_tree(
        {"adu-addition/Pool/200 - Backyard Oasis/200 - Before - Pool/a.jpg": 1}
    )

    result = scan_assets(root, settings=settings)

    (file,) = result.files
    assert file.project_id == "200"
    assert file.category == "adu-addition"
    assert file.subcategory == "pool"
    assert file.stage == "before"


def test_storage_path_includes_component_and_cleans_filename(asset_tree, settings):
    root = asset_tree(
        {
            "adu-addition/pool/200 - Backyard Oasis/200 - After/Café Before.jpg": 1,
            "kitchen/200 - Backyard Oasis/200 - Plans/floor plan #2.pdf": 1,
        }
    )

    result = scan_assets(root, settings=settings)

    pool, kitchen = result.files
    assert pool.filename == "Café Before.jpg"
    assert pool.storage_path == "projects/200-backyard-oasis/adu-addition/pool/photos/after/Caf__Before.jpg"
    assert kitchen.storage_path == "projects/200-backyard-oasis/kitchen/documents/plans/floor_plan__2.pdf"


def test_project_folder_without_subcategory_is_skipped(asset_tree, settings):
    root = asset_tree(
        {
            "adu-addition/200 - Backyard Oasis/200 - After Photos/a.jpg": 1,
            "adu-addition/pool/201 - Lagoon/201 - After/b.jpg": 1,
        }
    )

    result = scan_assets(root, settings=settings)

    assert [(f.project_id, f.subcategory) for f in result.files] == [("201", "pool")]
    assert len(result.warnings) == 1
    assert "200 - Backyard Oasis" in result.warnings[0].message
    assert "subcategory" in result.warnings[0].message


def test_documents_use_document_table(asset_tree, settings):
    root = asset_tree(
        {
            "bathroom/12 - Spa Bath/12 - Floor Plans/plan.pdf": 5,
            "bathroom/12 - Spa Bath/12 - Permits - Bath/permit.PDF": 5,
            "bathroom/12 - Spa Bath/12 - Random Stuff/notes.pdf": 5,
        }
    )

    result = scan_assets(root, settings=settings)

    stages = {f.filename: f.stage for f in result.files}
    assert stages == {"plan.pdf": "plans", "permit.PDF": "permits", "notes.pdf": "other"}
    assert all(f.kind == "document" for f in result.files)
    assert result.files[0].storage_path.startswith("projects/12-spa-bath/bathroom/documents/")
    assert result.stats.documents == 3


def test_skips_hidden_denylisted_and_unknown_files(asset_tree, settings):
    root = asset_tree(
        {
            "kitchen/1 - A/1 - After/.DS_Store": 1,
            "kitchen/1 - A/1 - After/Thumbs.db": 1,
            "kitchen/1 - A/1 - After/desktop.ini": 1,
            "kitchen/1 - A/1 - After/.hidden.jpg": 1,
            "kitchen/1 - A/1 - After/notes.txt": 1,
            "kitchen/1 - A/.cache/x.jpg": 1,
            "kitchen/1 - A/1 - After/keep.webp": 1,
        }
    )

    result = scan_assets(root, settings=settings)

    assert [f.filename for f in result.files] == ["keep.webp"]
    assert result.stats.skipped == 1


def test_malformed_project_folder_is_a_warning(asset_tree, settings):
    root = asset_tree(
        {
            "kitchen/Unsorted/photo.jpg": 1,
            "kitchen/5 - Fine/5 - After/photo.jpg": 1,
        }
    )

    result = scan_assets(root, settings=settings)

    assert [f.project_id for f in result.files] == ["5"]
    assert len(result.warnings) == 1
    assert "Unsorted" in result.warnings[0].message
    assert result.errors == []


def test_large_files_warn_but_are_kept(asset_tree):
    settings = make_settings(MAX_FILE_SIZE_MB=1)
    root = asset_tree({"kitchen/9 - Big/9 - After/huge.jpg": 1024 * 1024 + 1})

    result = scan_assets(root, settings=settings)

    assert len(result.files) == 1
    assert len(result.warnings) == 1
    assert result.warnings[0].path == "kitchen/9 - Big/9 - After/huge.jpg"


def test_files_directly_in_project_folder_are_other(asset_tree, settings):
    root = asset_tree({"kitchen/3 - Loose/cover.jpg": 1})
    assert scan_assets(root, settings=settings).files[0].stage == "other"


def test_missing_root_is_fatal(tmp_path: Path, settings):
    with pytest.raises(ScanRootError):
        scan_assets(tmp_path / "absent", settings=settings)


def test_category_filter_and_missing_category(asset_tree, settings):
    root = asset_tree(
        {
            "kitchen/1 - A/1 - After/a.jpg": 1,
            "bathroom/2 - B/2 - After/b.jpg": 1,
        }
    )

    result = scan_assets(root, categories=["bathroom", "pools"], settings=settings)

    assert [f.project_id for f in result.files] == ["2"]
    assert len(result.errors) == 1
    assert "pools" in result.errors[0].message


def test_project_filter(asset_tree, settings):
    root = asset_tree(
        {
            "kitchen/1 - A/1 - After/a.jpg": 1,
            "kitchen/2 - B/2 - After/b.jpg": 1,
        }
    )

    result = scan_assets(root, project_ids=["2"], settings=settings)

    assert [f.project_id for f in result.files] == ["2"]
    assert result.stats.projects == 1


def test_list_projects_reports_subcategories(asset_tree, settings):
    root = asset_tree(
        {
            "kitchen/104 - Luxe Revival - Kitchen/x.jpg": 1,
            "adu-addition/addition/7 - Second Story/x.jpg": 1,
        }
    )

    projects, warnings = list_projects(root, settings=settings)

    found = {(p.folder.id, p.category, p.subcategory) for p in projects}
    assert found == {("104", "kitchen", None), ("7", "adu-addition", "addition")}
    assert warnings == []


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("104 - Luxe Revival - Kitchen", ("104", "104-luxe-revival", "Luxe Revival", "kitchen")),
        ("7 - A & B's Place", ("7", "7-a-b-s-place", "A & B's Place", None)),
        ("No Delimiter", None),
        ("12 - ", None),
    ],
)
def test_parse_project_folder(name, expected):
    folder = parse_project_folder(name)
    if expected is None:
        assert folder is None
    else:
        assert (folder.id, folder.slug, folder.display_name, folder.hint) == expected


@pytest.mark.parametrize(
    ("folder", "kind", "expected"),
    [
        ("187 - After Photos - Kitchen", "image", "after"),
        ("187 - Existing", "image", "before"),
        ("187 - Work In Progress - Bath", "image", "progress"),
        ("187 - 3D Rendering", "image", "rendering"),
        ("187 - 3D Rendering", "document", "rendering"),
        ("187 - Samples", "image", "materials"),
        ("187 - Blueprints", "document", "plans"),
        ("187 - Agreement", "document", "contracts"),
        ("187 - Bills", "document", "invoices"),
        ("187 - Specs", "document", "specifications"),
        ("187 - Drone Shots", "image", "other"),
        ("After", "image", "after"),
        (None, "image", "other"),
    ],
)
def test_classify_stage(folder, kind, expected):
    assert classify_stage(folder, kind) == expected


def test_classify_extension():
    assert classify_extension(".HEIC") == "image"
    assert classify_extension(".pdf") == "document"
    assert classify_extension(".mov") == "skip"


def test_slugify():
    assert slugify("  Hello,  World!! ") == "hello-world"
