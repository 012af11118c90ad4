"""Competitor analysis input and output models."""

import re
from collections.abc import Mapping
from dataclasses import asdict, dataclass, fields
from typing import Any

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def _snake(key: str) -> str:
    return _CAMEL_RE.sub("_", key).lower()


def _normalize(data: Mapping[str, Any]) -> dict[str, Any]:
    """Accept snake_case or camelCase keys."""
    return {_snake(str(k)): v for k, v in data.items()}


def _str_list(value: Any) -> list[str] | None:
    if value is None:
        return None
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value]


def _opt_str(value: Any) -> str | None:
    return None if value is None else str(value)


@dataclass(frozen=True)
class PitchContext:
    industry: str | None = None
    service: str | None = None
    additional_context: str | None = None


@dataclass(frozen=True)
class FocusAreas:
    financial: bool = True
    news: bool = True
    executive_team: bool = True
    products: bool = True
    pricing: bool = True
    market_position: bool = True
    pitch_approach: bool = True

    @classmethod
    def only(cls, *names: str) -> "FocusAreas":
        """All flags false except *names*."""
        unknown = set(names) - {f.name for f in fields(cls)}
        if unknown:
            raise ValueError(f"Unknown focus area(s): {', '.join(sorted(unknown))}")
        return cls(**{f.name: f.name in names for f in fields(cls)})


@dataclass(frozen=True)
class CompetitorAnalysisInput:
    competitor_name: str
    website: str | None = None
    pitch_context: PitchContext | None = None
    focus_areas: FocusAreas | None = None
    news_time_frame: int = 12
    custom_queries: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CompetitorAnalysisInput":
        values = _normalize(data)
        name = values.get("competitor_name")
        if not name:
            raise ValueError("competitor_name is required")

        pitch_context = values.get("pitch_context")
        if isinstance(pitch_context, Mapping):
            pitch_context = PitchContext(
                **{k: v for k, v in _normalize(pitch_context).items() if k in PitchContext.__dataclass_fields__}
            )

        focus_areas = values.get("focus_areas")
        if isinstance(focus_areas, Mapping):
            # Flags missing from an explicit mapping are off, as in a partial request.
            flags = _normalize(focus_areas)
            focus_areas = FocusAreas(**{f.name: bool(flags.get(f.name, False)) for f in fields(FocusAreas)})

        return cls(
            competitor_name=str(name),
            website=values.get("website"),
            pitch_context=pitch_context,
            focus_areas=focus_areas,
            news_time_frame=int(values.get("news_time_frame") or 12),
            custom_queries=values.get("custom_queries"),
        )


@dataclass(frozen=True)
class FinancialData:
    summary: str
    revenue: str | None = None
    profitability: str | None = None
    growth_trends: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FinancialData":
        d = _normalize(data)
        return cls(
            summary=str(d.get("summary", "")),
            revenue=_opt_str(d.get("revenue")),
            profitability=_opt_str(d.get("profitability")),
            growth_trends=_opt_str(d.get("growth_trends")),
        )


@dataclass(frozen=True)
class NewsItem:
    title: str
    date: str
    summary: str
    source: str | None = None
    url: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "NewsItem":
        d = _normalize(data)
        return cls(
            title=str(d.get("title", "")),
            date=str(d.get("date", "")),
            summary=str(d.get("summary", "")),
            source=_opt_str(d.get("source")),
            url=_opt_str(d.get("url")),
        )


@dataclass(frozen=True)
class ExecutiveInfo:
    name: str
    title: str
    background: str | None = None
    linked_in_url: str | None = None
    strategic_vision: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ExecutiveInfo":
        d = _normalize(data)
        return cls(
            name=str(d.get("name", "")),
            title=str(d.get("title", "")),
            background=_opt_str(d.get("background")),
            linked_in_url=_opt_str(d.get("linked_in_url")),
            strategic_vision=_opt_str(d.get("strategic_vision")),
        )


@dataclass(frozen=True)
class ProductInfo:
    name: str
    description: str
    unique_features: list[str] | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProductInfo":
        d = _normalize(data)
        return cls(
            name=str(d.get("name", "")),
            description=str(d.get("description", "")),
            unique_features=_str_list(d.get("unique_features")),
        )


@dataclass(frozen=True)
class PricingInfo:
    summary: str
    model: str | None = None
    strategy: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PricingInfo":
        d = _normalize(data)
        return cls(
            summary=str(d.get("summary", "")),
            model=_opt_str(d.get("model")),
            strategy=_opt_str(d.get("strategy")),
        )


@dataclass(frozen=True)
class MarketPositionInfo:
    summary: str
    target_segments: list[str] | None = None
    differentiators: list[str] | None = None
    perception: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MarketPositionInfo":
        d = _normalize(data)
        return cls(
            summary=str(d.get("summary", "")),
            target_segments=_str_list(d.get("target_segments")),
            differentiators=_str_list(d.get("differentiators")),
            perception=_opt_str(d.get("perception")),
        )


@dataclass(frozen=True)
class PitchApproachInfo:
    summary: str
    likely_themes: list[str] | None = None
    value_propositions: list[str] | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PitchApproachInfo":
        d = _normalize(data)
        return cls(
            summary=str(d.get("summary", "")),
            likely_themes=_str_list(d.get("likely_themes")),
            value_propositions=_str_list(d.get("value_propositions")),
        )


@dataclass(frozen=True)
class CompetitorAnalysisOutput:
    competitor: str
    summary: str
    last_updated: str
    version: int = 1
    financial_performance: FinancialData | None = None
    news_and_deals: list[NewsItem] | None = None
    executive_team: list[ExecutiveInfo] | None = None
    products_offerings: list[ProductInfo] | None = None
    pricing: PricingInfo | None = None
    market_positioning: MarketPositionInfo | None = None
    pitch_approach: PitchApproachInfo | None = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}
