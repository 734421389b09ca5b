"""Parse the document detail page (``docinfo``) into record fields.

The page renders each field as ``div.input-group`` holding a
``span.informationTitle`` label and an ``.informationData`` value. Labels
are matched case-insensitively, exact first and then by substring, which is
how the portal's own label text varies between document types.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from bs4 import BeautifulSoup, Tag

from .models import join_remarks, join_values

GRANTOR_LABELS: tuple[str, ...] = ("GRANTORS", "MORTGAGORS")
GRANTEE_LABELS: tuple[str, ...] = (
    "GRANTEES",
    "MORTGAGEES",
    "ASSIGNEES",
    "GRANTEE",
    "MORTGAGEE",
    "ASSIGNEE",
)
REMARKS_LABEL = "NOTE"


@dataclass(frozen=True)
class DetailFields:
    document_number: str = ""
    book_type: str = ""
    document_type: str = ""
    amount: str = ""
    grantor: str = ""
    grantee: str = ""
    reference: str = ""
    remarks: str = ""
    legal: str = ""
    property: str = ""


def _text(tag: Tag) -> str:
    return tag.get_text(" ", strip=True)


def _label_of(group: Tag) -> str:
    title = group.select_one("span.informationTitle")
    return _text(title).upper() if title is not None else ""


class DetailPageParser:
    """Read labelled values out of one detail page's HTML."""

    grantor_labels: tuple[str, ...] = GRANTOR_LABELS
    grantee_labels: tuple[str, ...] = GRANTEE_LABELS

    def __init__(self, html: str) -> None:
        self.soup = BeautifulSoup(html or "", "html5lib")
        self.groups: list[Tag] = [
            g for g in self.soup.select("div.input-group") if g.select_one("span.informationTitle") is not None
        ]

    def _groups_for(self, label: str) -> list[Tag]:
        wanted = label.upper()
        exact = [g for g in self.groups if _label_of(g) == wanted]
        if exact:
            return exact
        return [g for g in self.groups if wanted in _label_of(g)]

    def _data_for(self, label: str) -> Optional[Tag]:
        for group in self._groups_for(label):
            data = group.select_one(".informationData")
            if data is not None:
                return data
        return None

    def value(self, label: str) -> str:
        data = self._data_for(label)
        if data is None:
            return ""
        return data.get_text("\n", strip=True).strip()

    def value_parts(self, label: str) -> list[str]:
        data = self._data_for(label)
        if data is None:
            return []
        children = data.find_all("p", recursive=False)
        if not children:
            children = data.select("p, div")
        if children:
            return [_text(child) for child in children]
        return [line.strip() for line in data.get_text("\n").splitlines()]

    def value_list(self, label: str) -> str:
        return join_values(self.value_parts(label))

    def first_value_list(self, labels: Iterable[str]) -> str:
        for label in labels:
            value = self.value_list(label)
            if value:
                return value
        return ""

    def remarks(self) -> str:
        parts: list[str] = []
        for group in self._groups_for(REMARKS_LABEL):
            data = group.select_one(".informationData")
            if data is None:
                continue
            children = data.select("p, div")
            if children:
                parts.extend(_text(child) for child in children)
            else:
                parts.append(_text(data))
        return join_remarks(parts)

    def parse(self) -> DetailFields:
        return DetailFields(
            document_number=self.value("INSTRUMENT"),
            book_type=self.value("INDEX"),
            document_type=self.value("TYPE"),
            amount=self.value("AMOUNT"),
            grantor=self.first_value_list(self.grantor_labels),
            grantee=self.first_value_list(self.grantee_labels),
            reference=self.value_list("REFERENCES"),
            remarks=self.remarks(),
            legal=self.value_list("LEGAL"),
            property=self.value_list("PROPERTY"),
        )


def parse_detail_html(html: str) -> DetailFields:
    return DetailPageParser(html).parse()


__all__ = ["DetailFields", "DetailPageParser", "parse_detail_html", "GRANTEE_LABELS", "GRANTOR_LABELS"]
