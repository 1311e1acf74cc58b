import pytest

from schema_bridge.core.filter import (
    EntitiesParams,
    EntityFilterParams,
    ExistingEntity,
    FilterEntity,
    RolesFilter,
    build_glob_matcher,
    prepare_entity_filter,
)
from schema_bridge.errors import UnreachableCaseError

SCHEMAS = ["public", "dev", "dev2"]


def _schemas(patterns):
    flt = prepare_entity_filter("postgresql", EntityFilterParams(schemas=patterns))
    return [name for name in SCHEMAS if flt.schema(name)]


def test_schema_globs():
    assert _schemas(None) == ["public", "dev", "dev2"]
    assert _schemas(["dev*"]) == ["dev", "dev2"]
    assert _schemas(["!dev"]) == ["public", "dev2"]
    assert _schemas(["public"]) == ["public"]
    assert _schemas("dev") == ["dev"]


def test_negated_patterns_vote_on_every_name():
    match = build_glob_matcher(["users", "!*_old"])
    assert match("users")
    assert not match("users_old")
    assert match("orders")
    assert not build_glob_matcher(["users"])("orders")


def test_table_filter_checks_schema_first():
    flt = prepare_entity_filter("postgresql", EntityFilterParams(schemas=["public"], tables=["!audit*"]))
    assert flt.table("public", "users")
    assert flt.table(None, "users")
    assert not flt.table("dev", "users")
    assert not flt.table("public", "audit_log")


def test_filter_entity_dispatch():
    flt = prepare_entity_filter("postgresql", EntityFilterParams(schemas=["dev*"]))
    assert flt(FilterEntity(type="schema", name="dev"))
    assert not flt(FilterEntity(type="table", name="users", schema_name="public"))
    assert not flt(FilterEntity(type="role", name="admin"))


def test_roles():
    def role_filter(roles):
        return prepare_entity_filter("postgresql", EntityFilterParams(entities=EntitiesParams(roles=roles)))

    assert not role_filter(False).role("admin")
    assert role_filter(True).role("admin")

    supabase = role_filter(RolesFilter(provider="supabase"))
    assert not supabase.role("anon")
    assert supabase.role("app")

    included = role_filter(RolesFilter(include=["app"]))
    assert included.role("app")
    assert not included.role("other")


def test_existing_entities_are_excluded():
    flt = prepare_entity_filter(
        "postgresql",
        existing_entities=[
            ExistingEntity(type="table", name="users"),
            ExistingEntity(type="schema", name="legacy"),
            ExistingEntity(type="role", name="admin"),
        ],
    )
    assert not flt.table("public", "users")
    assert not flt.table(None, "users")
    assert flt.table("public", "orders")
    assert not flt.schema("legacy")
    assert not flt.role("admin")


def test_postgis_extension_hides_its_tables():
    flt = prepare_entity_filter("postgresql", EntityFilterParams(extensions=["postgis"]))
    assert not flt.table("public", "spatial_ref_sys")
    assert flt.table("public", "users")


def test_unknown_extension_and_dialect():
    with pytest.raises(UnreachableCaseError):
        prepare_entity_filter("postgresql", EntityFilterParams(extensions=["timescale"]))
    with pytest.raises(UnreachableCaseError):
        prepare_entity_filter("oracle")


def test_schemaless_dialects_ignore_schema_patterns():
    flt = prepare_entity_filter("sqlite", EntityFilterParams(schemas=["x"]), [ExistingEntity(type="table", name="t2")])
    assert flt.table(None, "t")
    assert flt.table("anything", "t")
    assert not flt.table(None, "t2")
    assert flt.default_schema is None
