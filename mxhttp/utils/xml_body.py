"""
Dict-to-XML conversion for request bodies.

Element names are taken directly from dict keys. ``@name`` keys become
attributes, ``#text`` becomes the element text, and list values repeat the
element once per item.
"""

import xml.etree.ElementTree as ET
from typing import Any, Mapping


def dict_to_xml(data: Mapping[str, Any]) -> bytes:
    """
    Converts a mapping with exactly one top-level key (the root element) to
    UTF-8 XML bytes with a declaration.

    Raises:
        ValueError: If data does not have exactly one top-level key.
    """
    if not isinstance(data, Mapping) or len(data) != 1:
        raise ValueError(
            "expected a mapping with exactly one top-level key (the root element), "
            f"got {type(data).__name__} with "
            f"{len(data) if isinstance(data, Mapping) else 'N/A'} keys"
        )
    root_tag = next(iter(data))
    return element_to_bytes(_to_element(root_tag, data[root_tag]))


def element_to_bytes(element: ET.Element) -> bytes:
    return ET.tostring(element, encoding="utf-8", xml_declaration=True)


def _to_element(tag: str, value: Any) -> ET.Element:
    element = ET.Element(tag)
    if value is None:
        return element
    if isinstance(value, Mapping):
        for key, child in value.items():
            if key == "#text":
                element.text = _scalar(child)
            elif key.startswith("@"):
                element.set(key[1:], _scalar(child))
            elif isinstance(child, (list, tuple)):
                for item in child:
                    element.append(_to_element(key, item))
            else:
                element.append(_to_element(key, child))
    elif isinstance(value, (list, tuple)):
        for item in value:
            element.append(_to_element("item", item))
    else:
        element.text = _scalar(value)
    return element


def _scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
