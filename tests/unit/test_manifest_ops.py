"""Tests for the pure manifest operations and the wire schema."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pydantic
import pytest

from ipaforge.core.errors import NotFoundError, ValidationError
from ipaforge.core.manifest_ops import apply_operation, sort_versions
from ipaforge.models.manifest import (
    AddApp,
    AddNews,
    AddVersion,
    ManifestOperation,
    RemoveApp,
    RemoveNews,
    RemoveVersion,
    RepoApp,
    RepoNews,
    RepositoryManifest,
    RepoVersion,
    UpdateStore,
)

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _version(version: str, days: int = 0, url: str | None = None) -> RepoVersion:
    return RepoVersion(
        version=version,
        date=T0 + timedelta(days=days),
        size=10,
        download_url=url or f"https://x/ipa_{version}.ipa",
        min_os_version="14.0",
    )


def _app(bundle: str = "com.a", versions: list[RepoVersion] | None = None, **kw) -> RepoApp:
    values = dict(
        name="App A",
        bundle_identifier=bundle,
        developer_name="Dev",
        subtitle="sub",
        localized_description="desc",
        icon_url="https://x/icon.png",
        tint_color="#000000",
        versions=versions or [],
    )
    values.update(kw)
    return RepoApp(**values)


def _news(identifier: str = "n1", title: str = "Hello") -> RepoNews:
    return RepoNews(identifier=identifier, title=title, caption="c", date=T0, tint_color="#fff")


@pytest.fixture
def empty() -> RepositoryManifest:
    return RepositoryManifest(
        name="Repo",
        identifier="com.repo",
        subtitle="",
        description="",
        icon_url="",
        header_url="",
        website="",
        tint_color="#f97316",
    )


class TestWireSchema:
    def test_render_uses_installer_keys(self, empty):
        manifest = apply_operation(
            empty, AddVersion(bundle_identifier="com.a", version=_version("1.0"), seed_app=_app())
        )
        doc = manifest.render()
        app = doc["apps"][0]
        assert {"bundleIdentifier", "developerName", "iconURL", "tintColor", "screenshotURLs"} <= set(app)
        version = app["versions"][0]
        assert {"downloadURL", "minOSVersion", "localizedDescription", "date", "size"} <= set(version)
        assert "featuredApps" in doc
        assert "appPermissions" not in app

    def test_render_parses_back(self, empty):
        manifest = apply_operation(empty, AddNews(news=_news()))
        assert RepositoryManifest.model_validate(manifest.render()) == manifest

    def test_duplicate_versions_rejected(self):
        with pytest.raises(pydantic.ValidationError, match="duplicate version"):
            _app(versions=[_version("1.0", 1), _version("1.0", 0)])

    def test_unsorted_versions_rejected(self):
        with pytest.raises(pydantic.ValidationError, match="newest first"):
            _app(versions=[_version("1.0", 0), _version("1.1", 1)])

    def test_naive_dates_treated_as_utc(self):
        v = RepoVersion(
            version="1", date=datetime(2024, 1, 1), size=1, download_url="u", min_os_version="14"
        )
        assert v.date.tzinfo is not None

    def test_operations_parse_by_tag(self):
        adapter = pydantic.TypeAdapter(ManifestOperation)
        op = adapter.validate_python({"op": "remove_app", "bundle_identifier": "com.a"})
        assert op == RemoveApp(bundle_identifier="com.a")


class TestAddVersion:
    def test_unknown_bundle_seeds_app(self, empty):
        manifest = apply_operation(
            empty, AddVersion(bundle_identifier="com.a", version=_version("1.0"), seed_app=_app())
        )
        assert [v.version for v in manifest.apps[0].versions] == ["1.0"]

    def test_unknown_bundle_without_seed(self, empty):
        with pytest.raises(NotFoundError):
            apply_operation(empty, AddVersion(bundle_identifier="com.a", version=_version("1.0")))

    def test_versions_sorted_newest_first(self, empty):
        m = apply_operation(
            empty, AddVersion(bundle_identifier="com.a", version=_version("1.1", 1), seed_app=_app())
        )
        m = apply_operation(m, AddVersion(bundle_identifier="com.a", version=_version("1.0", 0)))
        m = apply_operation(m, AddVersion(bundle_identifier="com.a", version=_version("1.2", 2)))
        assert [v.version for v in m.apps[0].versions] == ["1.2", "1.1", "1.0"]

    def test_same_version_replaced(self, empty):
        m = apply_operation(
            empty, AddVersion(bundle_identifier="com.a", version=_version("1.0", 0), seed_app=_app())
        )
        m = apply_operation(
            m, AddVersion(bundle_identifier="com.a", version=_version("1.0", 1, url="https://x/new.ipa"))
        )
        assert len(m.apps[0].versions) == 1
        assert m.apps[0].versions[0].download_url == "https://x/new.ipa"

    def test_same_date_tie_broken_by_version(self, empty):
        m = apply_operation(
            empty, AddVersion(bundle_identifier="com.a", version=_version("1.0"), seed_app=_app())
        )
        m = apply_operation(m, AddVersion(bundle_identifier="com.a", version=_version("1.1")))
        assert [v.version for v in m.apps[0].versions] == ["1.1", "1.0"]

    def test_curated_fields_kept_on_upsert(self, empty):
        m = apply_operation(empty, AddApp(app=_app(localized_description="curated")))
        m = apply_operation(
            m,
            AddVersion(
                bundle_identifier="com.a",
                version=_version("1.0"),
                seed_app=_app(localized_description="from upload"),
            ),
        )
        assert m.apps[0].localized_description == "curated"

    def test_input_not_mutated(self, empty):
        apply_operation(
            empty, AddVersion(bundle_identifier="com.a", version=_version("1.0"), seed_app=_app())
        )
        assert empty.apps == []


    def test_renamed_version_replaces_entry_for_same_binary(self, empty):
        url = "https://x/ipa_7.ipa"
        m = apply_operation(
            empty,
            AddVersion(bundle_identifier="com.a", version=_version("1.0.0", 0, url), seed_app=_app()),
        )
        m = apply_operation(m, AddVersion(bundle_identifier="com.a", version=_version("0.9", -1)))
        m = apply_operation(m, AddVersion(bundle_identifier="com.a", version=_version("1.0.1", 0, url)))
        versions = m.apps[0].versions
        assert [v.version for v in versions] == ["1.0.1", "0.9"]
        assert [v.download_url for v in versions].count(url) == 1
        assert versions[0].date > versions[1].date

    def test_binary_moves_from_previous_bundle(self, empty):
        url = "https://x/ipa_7.ipa"
        m = apply_operation(
            empty, AddVersion(bundle_identifier="com.a", version=_version("1.0", 0, url), seed_app=_app())
        )
        m = apply_operation(m, UpdateStore(featured_apps=["com.a"]))
        m = apply_operation(
            m,
            AddVersion(
                bundle_identifier="com.b", version=_version("1.0", 0, url), seed_app=_app("com.b")
            ),
        )
        assert [a.bundle_identifier for a in m.apps] == ["com.b"]
        assert m.featured_apps == []

    def test_previous_bundle_keeps_other_versions(self, empty):
        url = "https://x/ipa_7.ipa"
        m = apply_operation(
            empty,
            AddApp(app=_app(versions=[_version("1.1", 1, url), _version("1.0", 0)])),
        )
        m = apply_operation(
            m,
            AddVersion(
                bundle_identifier="com.b", version=_version("1.1", 1, url), seed_app=_app("com.b")
            ),
        )
        assert [v.version for v in m.find_app("com.a").versions] == ["1.0"]
        assert [v.download_url for v in m.find_app("com.b").versions] == [url]


class TestAddApp:
    def test_replace_keeps_versions_when_none_given(self, empty):
        m = apply_operation(empty, AddApp(app=_app(versions=[_version("1.0")])))
        m = apply_operation(m, AddApp(app=_app(name="Renamed")))
        assert m.apps[0].name == "Renamed"
        assert [v.version for v in m.apps[0].versions] == ["1.0"]

    def test_unsorted_input_versions_sorted(self, empty):
        app = RepoApp.model_construct(
            **_app().model_dump(exclude={"versions"}),
            versions=[_version("1.0", 0), _version("1.1", 1)],
        )
        m = apply_operation(empty, AddApp.model_construct(op="add_app", app=app))
        assert [v.version for v in m.apps[0].versions] == ["1.1", "1.0"]


class TestRemove:
    def test_remove_app(self, empty):
        m = apply_operation(empty, AddApp(app=_app()))
        m = apply_operation(m, UpdateStore(featured_apps=["com.a"]))
        m = apply_operation(m, RemoveApp(bundle_identifier="com.a"))
        assert m.apps == []
        assert m.featured_apps == []

    def test_remove_unknown_app(self, empty):
        with pytest.raises(NotFoundError):
            apply_operation(empty, RemoveApp(bundle_identifier="com.nope"))

    def test_remove_version_by_url(self, empty):
        m = apply_operation(empty, AddApp(app=_app(versions=[_version("1.1", 1), _version("1.0", 0)])))
        m = apply_operation(
            m, RemoveVersion(bundle_identifier="com.a", download_url="https://x/ipa_1.1.ipa")
        )
        assert [v.version for v in m.apps[0].versions] == ["1.0"]

    def test_removing_last_version_removes_app(self, empty):
        m = apply_operation(empty, AddApp(app=_app(versions=[_version("1.0")])))
        m = apply_operation(m, RemoveVersion(bundle_identifier="com.a", version="1.0"))
        assert m.apps == []

    def test_remove_version_no_match_is_noop(self, empty):
        m = apply_operation(empty, AddApp(app=_app(versions=[_version("1.0")])))
        assert apply_operation(m, RemoveVersion(bundle_identifier="com.a", version="9.9")) == m

    def test_remove_version_needs_selector(self, empty):
        m = apply_operation(empty, AddApp(app=_app(versions=[_version("1.0")])))
        with pytest.raises(ValidationError):
            apply_operation(m, RemoveVersion(bundle_identifier="com.a"))


    def test_remove_version_by_url_across_apps(self, empty):
        url = "https://x/shared.ipa"
        m = apply_operation(empty, AddApp(app=_app(versions=[_version("1.0", 0, url)])))
        m = apply_operation(
            m, AddApp(app=_app("com.b", versions=[_version("2.0", 1, url), _version("1.0", 0)]))
        )
        m = apply_operation(m, UpdateStore(featured_apps=["com.a", "com.b"]))
        m = apply_operation(m, RemoveVersion(download_url=url))
        assert [a.bundle_identifier for a in m.apps] == ["com.b"]
        assert [v.version for v in m.apps[0].versions] == ["1.0"]
        assert m.featured_apps == ["com.b"]

    def test_remove_version_without_bundle_needs_url(self, empty):
        m = apply_operation(empty, AddApp(app=_app(versions=[_version("1.0")])))
        with pytest.raises(ValidationError):
            apply_operation(m, RemoveVersion(version="1.0"))

    def test_remove_unknown_url_everywhere_is_noop(self, empty):
        m = apply_operation(empty, AddApp(app=_app(versions=[_version("1.0")])))
        assert apply_operation(m, RemoveVersion(download_url="https://x/none.ipa")) == m


class TestNewsAndStore:
    def test_add_news_prepends(self, empty):
        m = apply_operation(empty, AddNews(news=_news("n1")))
        m = apply_operation(m, AddNews(news=_news("n2")))
        assert [n.identifier for n in m.news] == ["n2", "n1"]

    def test_add_news_same_id_replaces(self, empty):
        m = apply_operation(empty, AddNews(news=_news("n1", "Old")))
        m = apply_operation(m, AddNews(news=_news("n1", "New")))
        assert [n.title for n in m.news] == ["New"]

    def test_remove_news(self, empty):
        m = apply_operation(empty, AddNews(news=_news("n1")))
        assert apply_operation(m, RemoveNews(identifier="n1")).news == []

    def test_remove_unknown_news(self, empty):
        with pytest.raises(NotFoundError):
            apply_operation(empty, RemoveNews(identifier="nope"))

    def test_update_store_partial(self, empty):
        m = apply_operation(empty, UpdateStore(name="New Name", tint_color="#123456"))
        assert m.name == "New Name"
        assert m.tint_color == "#123456"
        assert m.identifier == "com.repo"

    def test_update_store_cannot_blank_name(self, empty):
        with pytest.raises(ValidationError):
            apply_operation(empty, UpdateStore(name=""))


def test_sort_versions_helper():
    versions = [_version("1.0", 0), _version("2.0", 5), _version("1.5", 2)]
    assert [v.version for v in sort_versions(versions)] == ["2.0", "1.5", "1.0"]
