from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Closed set of message fields a rule can target. The query compiler keeps
# one translation per entry.
RuleField = Literal["from", "to", "cc", "subject", "body"]
RuleAction = Literal["accept", "reject"]
PanelKind = Literal["filter", "catch_all"]


class PanelRule(BaseModel):
    field: RuleField
    pattern: str  # Regex-like, as typed by the user. Not escaped for Gmail.
    action: RuleAction

    @field_validator("pattern")
    @classmethod
    def pattern_must_not_be_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("pattern cannot be empty")
        return value


class PanelConfig(BaseModel):
    """
    A named view of the inbox.

    A "filter" panel with no rules is the shared whole-inbox view. A
    "catch_all" panel has no rules of its own and counts everything that
    no sibling filter panel claims.
    """

    name: str
    kind: PanelKind = "filter"
    rules: List[PanelRule] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def name_must_not_be_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("panel name cannot be empty")
        return value.strip()

    @model_validator(mode="after")
    def check_catch_all_has_no_rules(self):
        if self.kind == "catch_all" and self.rules:
            raise ValueError(
                f"catch_all panel '{self.name}' cannot define rules; it counts whatever other panels leave unclaimed"
            )
        return self

    @property
    def has_rules(self) -> bool:
        return len(self.rules) > 0

    @property
    def is_catch_all(self) -> bool:
        return self.kind == "catch_all"


class CountResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total: int = Field(ge=0)
    unread: int = Field(ge=0)
    is_estimate: bool = Field(alias="isEstimate")

    @model_validator(mode="after")
    def check_unread_not_above_total(self):
        if self.unread > self.total:
            raise ValueError(
                f"unread ({self.unread}) cannot exceed total ({self.total})"
            )
        return self


class CountsRequest(BaseModel):
    """Body of a counts request: the panels to count and an optional active search."""

    model_config = ConfigDict(populate_by_name=True)

    panels: List[PanelConfig]
    search_query: Optional[str] = Field(default=None, alias="searchQuery")


class CountsResponse(BaseModel):
    counts: List[CountResult]
