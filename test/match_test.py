from cloudgraph.match import And, Or, Property, Tag, TagKey, TagValue
from cloudgraph.resource import Resource


def instance() -> Resource:
    resource = Resource.init("instance", "inst_1")
    resource.properties.update(
        {
            "ID": "inst_1",
            "Name": "My-Instance",
            "Size": 10,
            "Public": True,
            "Tags": ["Env=Production", "Team=infra", "Owner=bob"],
        }
    )
    return resource


def test_property() -> None:
    res = instance()
    assert Property("Name", "My-Instance").match(res)
    assert not Property("Name", "my-instance").match(res)
    assert Property("Name", "my-instance").ignore_case().match(res)
    assert Property("Name", "inst").ignore_case().contains().match(res)
    assert not Property("Name", "inst").contains().match(res)
    assert not Property("Unknown", "x").match(res)
    # values of other types are compared as string on demand
    assert not Property("Size", "10").match(res)
    assert Property("Size", "10").match_string().match(res)
    assert Property("Public", "true").match_string().match(res)
    assert Property("Size", 10)(res)


def test_tags() -> None:
    res = instance()
    assert Tag("Env", "Production").match(res)
    assert not Tag("Env", "production").match(res)
    assert Tag("Env", "Prod*").match(res)
    assert Tag("*", "infra").match(res)
    assert not Tag("Env", "Prod").match(res)
    assert TagKey("Owner").match(res)
    assert not TagKey("bob").match(res)
    assert TagValue("bob").match(res)
    assert not TagValue("Owner").match(res)
    assert not Tag("Env", "Production").match(Resource.init("instance", "no_tags"))


def test_combinators() -> None:
    res = instance()
    assert And(Property("Size", 10), Tag("Team", "infra")).match(res)
    assert not And(Property("Size", 10), Tag("Team", "dev")).match(res)
    assert not And().match(res)
    assert Or(Property("Size", 11), Tag("Team", "infra")).match(res)
    assert not Or(Property("Size", 11), Tag("Team", "dev")).match(res)
    assert not Or().match(res)
    assert And(Or(TagKey("Owner"), TagKey("Creator")), Property("Public", True)).match(res)


def test_tag_value_with_equal_sign() -> None:
    res = Resource.init("instance", "inst_2")
    res.properties["Tags"] = ["Query=a=b", "Empty="]
    assert TagValue("a=b").match(res)
    assert not TagValue("a").match(res)
    assert TagValue("").match(res)
    assert TagKey("Query").match(res)
