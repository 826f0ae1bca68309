from __future__ import annotations

from user_index.defaults import Defaults
from user_index.form_schema import FieldPageVisitor, field_page_map, parse_form_schema, schema_field_ids


NESTED_SCHEMA = {
    "result": [
        {
            "schema": {
                "properties": {
                    "default": {
                        "properties": {
                            "age": {"fieldId": "f-age", "title": "Age"},
                            "employed": {
                                "fieldId": "f-employed",
                                "title": "Employed?",
                                "dependencies": {
                                    "employed": {
                                        "oneOf": [
                                            {"properties": {"employer": {"fieldId": "f-employer"}}},
                                            {"properties": {"reason": {"fieldId": "f-reason"}}},
                                        ]
                                    }
                                },
                            },
                        }
                    },
                    "background": {
                        "properties": {"education": {"fieldId": "f-education"}},
                        "dependencies": {
                            "education": {
                                "allOf": [
                                    {
                                        "properties": {
                                            "stream": {
                                                "fieldId": "f-stream",
                                                "dependencies": {
                                                    "stream": {"properties": {"college": {"fieldId": "f-college"}}}
                                                },
                                            }
                                        }
                                    }
                                ]
                            }
                        },
                    },
                }
            }
        }
    ]
}


def test_visitor_maps_fields_at_any_depth_to_their_page() -> None:
    mapping = field_page_map(NESTED_SCHEMA)

    assert mapping == {
        "f-age": "eligibilityCheck",
        "f-employed": "eligibilityCheck",
        "f-employer": "eligibilityCheck",
        "f-reason": "eligibilityCheck",
        "f-education": "background",
        "f-stream": "background",
        "f-college": "background",
    }


def test_schema_envelopes_are_equivalent() -> None:
    inner = NESTED_SCHEMA["result"][0]["schema"]

    assert field_page_map({"schema": inner}) == field_page_map(NESTED_SCHEMA)
    assert field_page_map(inner) == field_page_map(NESTED_SCHEMA)
    assert field_page_map({"data": [{"form": {"schema": inner}}]}) == field_page_map(NESTED_SCHEMA)


def test_unknown_shapes_give_empty_schema() -> None:
    assert parse_form_schema(None).is_empty
    assert parse_form_schema("not a schema").is_empty
    assert parse_form_schema({"result": []}).is_empty
    assert schema_field_ids({"properties": {"page": "oops"}}) == []


def test_fields_without_id_are_skipped_but_their_dependencies_are_walked() -> None:
    schema = {
        "properties": {
            "page1": {
                "properties": {
                    "consent": {
                        "title": "Consent",
                        "dependencies": {"consent": {"anyOf": [{"properties": {"sign": {"fieldId": "f-sign"}}}]}},
                    }
                }
            }
        }
    }

    assert schema_field_ids(schema) == ["f-sign"]


def test_page_aliases_come_from_defaults() -> None:
    schema = parse_form_schema(NESTED_SCHEMA)
    visitor = FieldPageVisitor(Defaults(page_aliases={"default": "intake"}))

    assert visitor.page_names(schema) == ["intake", "background"]
    assert set(visitor.visit(schema).values()) == {"intake", "background"}
