from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


PatternKind = Literal["vendor", "customer"]


class PatternParty(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str = Field(min_length=1)
    name: Any = None
    full_name: Any = Field(default=None, alias="fullName")


class PostingPattern(BaseModel):
    """How bills (or invoices) for one counterparty are usually posted.

    Only the party id is checked. Everything else is free-form notes kept
    as written in the file.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    vendor: Optional[PatternParty] = None
    customer: Optional[PatternParty] = None
    terms: Any = None
    typical_items: Any = Field(default=None, alias="typicalItems")
    tax_codes: Any = Field(default=None, alias="taxCodes")
    notes: Any = None

    def party(self, kind: PatternKind) -> Optional[PatternParty]:
        return self.vendor if kind == "vendor" else self.customer


@dataclass(frozen=True)
class PatternMatch:
    file: str
    pattern: PostingPattern
