"""Tests for loading related rows through the access filters."""

import pytest

from crudable.relations import OmissionReason

from helpers import ROLES, ROWS, make_service, make_user


async def load(service, table, row_id, requested, *roles, user_id=1, **options):
    role_set = service.permissions.resolve_roles(make_user(user_id, *roles))
    row = next(r for r in ROWS[table] if r["id"] == row_id)
    return await service.loader.load(role_set, user_id, table, row, requested, **options)


# ── Many-to-one ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_many_to_one_is_tagged_labelled_and_filtered():
    service = await make_service()
    result = await load(service, "OrganizationPerson", 1, ["idOrganization", "idPerson"], "member")

    org = result.relations["idOrganization"]
    assert org["id"] == 1
    assert org["_table"] == "Organization"
    assert org["_label"] == "Acme"
    assert "secretNote" not in org
    assert "apiToken" not in org

    person = result.relations["idPerson"]
    assert person["_label"] == "Ada Lovelace"
    assert "email" not in person
    assert "password" not in person
    assert result.omitted == {}


@pytest.mark.asyncio
async def test_many_to_one_omission_reasons():
    service = await make_service()

    hidden = await load(service, "OrganizationPerson", 2, ["idPerson"], "member")
    null = await load(service, "OrganizationPerson", 3, ["idPerson"], "member")
    missing = await load(service, "Album", 4, ["byArtist"], "member")

    assert hidden.omitted == {"idPerson": OmissionReason.UNAUTHORIZED}
    assert null.omitted == {"idPerson": OmissionReason.NULL_FOREIGN_KEY}
    assert missing.omitted == {"byArtist": OmissionReason.NOT_FOUND}
    assert not hidden.relations and not null.relations and not missing.relations


@pytest.mark.asyncio
async def test_published_target_follows_role_inheritance():
    service = await make_service()
    member = await load(service, "Album", 5, ["byArtist"], "member")
    admin = await load(service, "Album", 5, ["byArtist"], "admin")

    assert member.omitted == {"byArtist": OmissionReason.UNAUTHORIZED}
    assert admin.relations["byArtist"]["name"] == "Hidden"


@pytest.mark.asyncio
async def test_compact_many_to_one():
    service = await make_service()
    result = await load(service, "OrganizationPerson", 1, ["idPerson"], "admin", compact=True)
    assert result.relations["idPerson"] == {
        "id": 1,
        "givenName": "Ada",
        "familyName": "Lovelace",
        "_table": "Person",
        "_label": "Ada Lovelace",
    }


@pytest.mark.asyncio
async def test_no_id_and_no_system_fields_apply_to_related_rows():
    service = await make_service()
    result = await load(
        service, "OrganizationPerson", 1, ["idOrganization"], "member",
        no_id=True, no_system_fields=True,
    )
    org = result.relations["idOrganization"]
    assert org == {"name": "Acme", "_label": "Acme"}


# ── One-to-many ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_one_to_many_follows_default_sort_and_hides_drafts():
    service = await make_service()
    result = await load(service, "Organization", 1, ["members", "albums"], "member")

    members = result.relations["members"]
    assert [m["id"] for m in members] == [2, 1]
    assert all(m["_table"] == "OrganizationPerson" for m in members)

    albums = result.relations["albums"]
    assert [a["name"] for a in albums] == ["Second", "First"]


@pytest.mark.asyncio
async def test_one_to_many_sql_carries_order_by():
    service = await make_service()
    await load(service, "Organization", 1, ["members"], "member")
    statements = [sql for sql, _ in service.storage.statements]
    assert any('ORDER BY "position" ASC' in sql for sql in statements)


@pytest.mark.asyncio
async def test_second_level_many_to_one_skips_parent_table():
    service = await make_service()
    result = await load(
        service, "Organization", 1, ["members"], "member", expand_second_level=True,
    )
    by_id = {m["id"]: m for m in result.relations["members"]}

    # Person 1 is shared, Person 2 is another user's draft
    assert list(by_id[1]["_relations"]) == ["idPerson"]
    assert by_id[1]["_relations"]["idPerson"]["_label"] == "Ada Lovelace"
    assert "_relations" not in by_id[2]


@pytest.mark.asyncio
async def test_second_level_off_by_default():
    service = await make_service()
    result = await load(service, "Organization", 1, ["members"], "member")
    assert all("_relations" not in m for m in result.relations["members"])


@pytest.mark.asyncio
async def test_empty_one_to_many_is_omitted():
    service = await make_service()
    result = await load(service, "Organization", 2, ["members", "albums"], "member")
    assert result.relations == {}
    assert result.omitted == {
        "members": OmissionReason.EMPTY,
        "albums": OmissionReason.EMPTY,
    }


@pytest.mark.asyncio
async def test_one_to_many_with_only_hidden_rows_is_unauthorized():
    service = await make_service(rows={
        "Organization": ROWS["Organization"][:1],
        "OrganizationPerson": ROWS["OrganizationPerson"][2:],
    })
    result = await load(service, "Organization", 1, ["members"], "member")
    assert result.omitted == {"members": OmissionReason.UNAUTHORIZED}


@pytest.mark.asyncio
async def test_unreadable_or_unknown_relations_are_unavailable():
    service = await make_service()
    result = await load(service, "Organization", 1, ["secrets", "nope"], "member")
    assert result.omitted == {
        "secrets": OmissionReason.UNAVAILABLE,
        "nope": OmissionReason.UNAVAILABLE,
    }


@pytest.mark.asyncio
async def test_load_relations_for_row_returns_only_loaded():
    service = await make_service()
    role_set = service.permissions.resolve_roles(make_user(1, "admin"))
    relations = await service.loader.load_relations_for_row(
        role_set, 1, "Organization", ROWS["Organization"][0], ["secrets", "members", "nope"],
    )
    assert set(relations) == {"secrets", "members"}


# ── Depth bound ──────────────────────────────────────────────────────────────


CYCLE_SCHEMA = {
    "roles": ROLES,
    "tables": {
        "Alpha": {"granted": {"public": ["read"]}, "fields": {"name": {}}},
        "Beta": {
            "granted": {"public": ["read"]},
            "fields": {
                "name": {},
                "alpha": {"type": "integer", "relation": "Alpha", "arrayName": "betas",
                          "relationshipStrength": "Strong"},
                "gamma": {"type": "integer", "relation": "Gamma", "arrayName": "betas"},
            },
        },
        "Gamma": {
            "granted": {"public": ["read"]},
            "fields": {
                "name": {},
                "alpha": {"type": "integer", "relation": "Alpha", "arrayName": "gammas"},
            },
        },
    },
}

CYCLE_ROWS = {
    "Alpha": [{"id": 1, "name": "a", "granted": "shared"}],
    "Beta": [{"id": 1, "name": "b", "alpha": 1, "gamma": 1, "granted": "shared"}],
    "Gamma": [{"id": 1, "name": "c", "alpha": 1, "granted": "shared"}],
}


@pytest.mark.asyncio
async def test_expansion_stops_after_second_level():
    service = await make_service(CYCLE_SCHEMA, CYCLE_ROWS)
    result = await service.loader.load(
        {"public"}, None, "Alpha", CYCLE_ROWS["Alpha"][0], ["betas", "gammas"],
        expand_second_level=True,
    )

    beta = result.relations["betas"][0]
    assert list(beta["_relations"]) == ["gamma"]
    gamma = beta["_relations"]["gamma"]
    assert gamma["name"] == "c"
    assert "_relations" not in gamma

    # Gamma rows reached directly only point back at Alpha, so nothing nests
    assert "_relations" not in result.relations["gammas"][0]


@pytest.mark.asyncio
async def test_relation_all_on_cycle_nests_one_level():
    service = await make_service(CYCLE_SCHEMA, CYCLE_ROWS)
    result = await service.get_table_data("Alpha", None, relation="all")
    relations = result["rows"][0]["_relations"]

    assert set(relations) == {"betas", "gammas"}
    for rows in relations.values():
        for row in rows:
            for nested in row.get("_relations", {}).values():
                assert "_relations" not in nested
                assert nested["_table"] != "Alpha"
