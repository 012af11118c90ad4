"""Competitor analysis recipe — focus-area fan-out, join, error check, synthesis."""

import logging
from collections.abc import AsyncIterator, Callable, Mapping
from datetime import datetime, timezone
from typing import Any

import anthropic

from researchgraph.core.graph import CompiledGraph, StateGraph
from researchgraph.core.node import END, START, Node, NodeFn
from researchgraph.core.runner import StepSnapshot
from researchgraph.core.state import LastValue, RunContext, SetOnce, StateSchema, format_template
from researchgraph.nodes.claude import ClaudeNode
from researchgraph.recipes.competitor_models import (
    CompetitorAnalysisInput,
    CompetitorAnalysisOutput,
    ExecutiveInfo,
    FinancialData,
    FocusAreas,
    MarketPositionInfo,
    NewsItem,
    PitchApproachInfo,
    PricingInfo,
    ProductInfo,
)

logger = logging.getLogger(__name__)

AGENT_NAME = "competitor_analysis"

# Research node name -> (focus flag, state channel), in routing order.
RESEARCH_NODES: dict[str, tuple[str, str]] = {
    "financial": ("financial", "financial_data"),
    "news": ("news", "news_data"),
    "executive": ("executive_team", "executive_data"),
    "products": ("products", "products_data"),
    "pricing": ("pricing", "pricing_data"),
    "market_position": ("market_position", "market_position_data"),
    "pitch_approach": ("pitch_approach", "pitch_approach_data"),
}

SCHEMA = StateSchema(
    {
        "input": LastValue(),
        "output": LastValue(),
        "error": LastValue(),
        **{channel: SetOnce() for _, channel in RESEARCH_NODES.values()},
    },
    error_channel="error",
)

# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------


def select_research_nodes(focus: FocusAreas | None) -> list[str]:
    """Decision table for which research branches run.

    Each data branch runs iff its flag is set. ``pitch_approach`` runs iff
    its flag is set and either at least three data branches are selected,
    or market position is selected together with products or financial.
    """
    focus = focus or FocusAreas()
    selected = [
        name
        for name, (flag, _) in RESEARCH_NODES.items()
        if name != "pitch_approach" and getattr(focus, flag)
    ]
    if focus.pitch_approach and (
        len(selected) >= 3 or (focus.market_position and (focus.products or focus.financial))
    ):
        selected.append("pitch_approach")
    return selected


def focus_areas_router(state: Mapping[str, Any]) -> list[str]:
    request: CompetitorAnalysisInput = state["input"]
    return select_research_nodes(request.focus_areas)


def check_errors(state: Mapping[str, Any]) -> str:
    return "error" if state.get("error") else "summarize"


async def start_research(state: Mapping[str, Any], ctx: RunContext) -> None:
    logger.info("[%s] Starting competitor analysis for %s", ctx.correlation_id, state["input"].competitor_name)


async def check_nodes(state: Mapping[str, Any], ctx: RunContext) -> None:
    done = [name for name, (_, channel) in RESEARCH_NODES.items() if channel in state]
    logger.info("[%s] Research complete: %s", ctx.correlation_id, done)


# ---------------------------------------------------------------------------
# Prompt templates
# ---------------------------------------------------------------------------

FINANCIAL_PROMPT = """Research the financial performance of {competitor_name}.

Gather, where available:
1. Revenue figures and trends
2. Profitability and margins
3. Growth trends and projections

Summarize the competitor's financial health and the trends that matter for competitive positioning.
{context}
Respond with a JSON object: {"revenue": str, "profitability": str, "growthTrends": str, "summary": str}.
Only "summary" is required.
"""

NEWS_PROMPT = """Research recent news and deal announcements for {competitor_name} from the {time_frame}.

Emphasize major client wins or partnerships, mergers and acquisitions, product or service launches,
leadership changes, and strategic initiatives or pivots. List the most relevant items first.
{context}
Respond with a JSON array of objects: {"title": str, "date": str, "summary": str, "source": str, "url": str}.
"""

EXECUTIVE_PROMPT = """Identify the key executives of {competitor_name}.

For each executive give their name, title, professional background and any public statements about
strategy or vision.
{context}
Respond with a JSON array of objects:
{"name": str, "title": str, "background": str, "linkedInUrl": str, "strategicVision": str}.
"""

PRODUCTS_PROMPT = """Describe the main products and services offered by {competitor_name}.

For each offering give its name, a description and its unique features or selling points.
{context}
Respond with a JSON array of objects: {"name": str, "description": str, "uniqueFeatures": [str]}.
"""

PRICING_PROMPT = """Analyze the pricing approach of {competitor_name}.

Describe the pricing model (subscription, one-time, usage-based, ...) and pricing strategy
(premium, budget, value-based, ...), and anything notable about their fees.
{context}
Respond with a JSON object: {"model": str, "strategy": str, "summary": str}. Only "summary" is required.
"""

MARKET_POSITION_PROMPT = """Analyze the market positioning of {competitor_name}.

Describe their target client segments, key differentiators and how the industry perceives them.
{context}
Respond with a JSON object:
{"targetSegments": [str], "differentiators": [str], "perception": str, "summary": str}.
Only "summary" is required.
"""

PITCH_APPROACH_PROMPT = """Infer the pitch approach {competitor_name} would likely take with potential clients.

Predict the main themes they would emphasize, the value propositions they would highlight and their
overall pitch strategy.
{insights}
Respond with a JSON object: {"likelyThemes": [str], "valuePropositions": [str], "summary": str}.
"""

SUMMARY_PROMPT = """Write a comprehensive summary of the competitive analysis for {competitor_name}.

Synthesize these research components:
{sections}
Cover {competitor_name}'s competitive positioning, key strengths and weaknesses, what makes them unique,
and the insights that matter most when competing against them in a pitch. Respond in prose.
"""


def _context_lines(request: CompetitorAnalysisInput, topic: str = "aspects") -> str:
    lines = []
    if request.website:
        lines.append(f"The competitor's website is: {request.website}")
    pitch = request.pitch_context
    if pitch and pitch.industry:
        lines.append(f"Industry context: focus on {topic} relevant to the {pitch.industry} industry.")
    if pitch and pitch.service:
        lines.append(f"Service context: emphasize {topic} related to {pitch.service}.")
    return "\n".join(lines) + "\n" if lines else ""


def _time_frame(months: int) -> str:
    return "past month" if months == 1 else f"past {months} months"


def _list_parser(item: Callable[[Mapping[str, Any]], Any]) -> Callable[[Any], list[Any]]:
    def parse(data: Any) -> list[Any]:
        return [item(entry) for entry in data if isinstance(entry, Mapping)]

    return parse


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------


class ResearchNode(ClaudeNode):
    """One research branch: prompt the model, parse the JSON answer, write its own slot."""

    def __init__(
        self,
        name: str,
        *,
        channel: str,
        prompt_template: str,
        parse: Callable[[Any], Any],
        expect: type = dict,
        topic: str = "aspects",
        **kwargs: Any,
    ) -> None:
        super().__init__(name, **kwargs)
        self.channel = channel
        self.prompt_template = prompt_template
        self.parse = parse
        self.expect = expect
        self.topic = topic

    def build_prompt(self, state: Mapping[str, Any], ctx: RunContext) -> str:
        request: CompetitorAnalysisInput = state["input"]
        logger.info("[%s] %s: researching %s", ctx.correlation_id, self.name, request.competitor_name)
        return format_template(
            self.prompt_template,
            {
                "competitor_name": request.competitor_name,
                "time_frame": _time_frame(request.news_time_frame),
                "context": _context_lines(request, self.topic),
            },
        )

    def to_update(self, data: Any, state: Mapping[str, Any]) -> dict[str, Any]:
        return {self.channel: self.parse(data)}


class PitchApproachNode(ClaudeNode):
    """Infer the competitor's pitch from whatever market, product and financial data is visible."""

    def __init__(self, name: str = "pitch_approach", **kwargs: Any) -> None:
        kwargs.setdefault("temperature", 0.2)
        kwargs.setdefault("max_tokens", 1500)
        kwargs.setdefault(
            "system",
            "You are a strategic pitch consultant who specializes in analyzing competitors' sales approaches.",
        )
        super().__init__(name, **kwargs)

    def build_prompt(self, state: Mapping[str, Any], ctx: RunContext) -> str:
        request: CompetitorAnalysisInput = state["input"]
        insights: list[str] = []

        market: MarketPositionInfo | None = state.get("market_position_data")
        if market:
            insights.append("Market positioning insights:")
            if market.target_segments:
                insights.append(f"- Target segments: {', '.join(market.target_segments)}")
            if market.differentiators:
                insights.append(f"- Key differentiators: {', '.join(market.differentiators)}")
            if market.perception:
                insights.append(f"- Market perception: {market.perception}")
            insights.append(f"- Overall positioning: {market.summary}")

        products: list[ProductInfo] | None = state.get("products_data")
        if products:
            insights.append("Product offerings insights:")
            for product in products[:3]:
                insights.append(f"- {product.name}: {product.description}")
                if product.unique_features:
                    insights.append(f"  Features: {', '.join(product.unique_features)}")

        financial: FinancialData | None = state.get("financial_data")
        if financial:
            insights.append(f"Financial performance insights:\n{financial.summary}")

        pitch = request.pitch_context
        if pitch:
            insights.append("Client context:")
            if pitch.industry:
                insights.append(f"- Industry: {pitch.industry}")
            if pitch.service:
                insights.append(f"- Service: {pitch.service}")
            if pitch.additional_context:
                insights.append(f"- Additional context: {pitch.additional_context}")

        return format_template(
            PITCH_APPROACH_PROMPT,
            {"competitor_name": request.competitor_name, "insights": "\n".join(insights)},
        )

    def to_update(self, data: Any, state: Mapping[str, Any]) -> dict[str, Any]:
        return {"pitch_approach_data": PitchApproachInfo.from_dict(data)}

    async def run(self, state: Mapping[str, Any], ctx: RunContext) -> dict[str, Any]:
        if not any(state.get(c) for c in ("market_position_data", "products_data", "financial_data")):
            logger.info("[%s] Insufficient data to analyze pitch approach", ctx.correlation_id)
            return {
                "pitch_approach_data": PitchApproachInfo(
                    summary="Insufficient data to analyze potential pitch approach"
                )
            }
        return await super().run(state, ctx)


class SummarizerNode(ClaudeNode):
    """Synthesize every research slot present into the final ``output``."""

    def __init__(self, name: str = "summarize", **kwargs: Any) -> None:
        kwargs.setdefault("max_tokens", 2000)
        kwargs.setdefault(
            "system",
            "You are an expert consultant who specializes in competitive intelligence and analysis.",
        )
        super().__init__(name, **kwargs)

    def build_prompt(self, state: Mapping[str, Any], ctx: RunContext) -> str:
        request: CompetitorAnalysisInput = state["input"]
        sections: list[str] = []

        if financial := state.get("financial_data"):
            sections.append(f"### Financial Performance\n{financial.summary}")
        if news := state.get("news_data"):
            lines = [f"- {n.title} ({n.date}): {n.summary}" for n in news[:3]]
            if len(news) > 3:
                lines.append(f"- Plus {len(news) - 3} additional news items")
            sections.append("### Recent News & Deals\n" + "\n".join(lines))
        if executives := state.get("executive_data"):
            lines = [
                f"- {e.name} ({e.title})" + (f": {e.background}" if e.background else "") for e in executives[:3]
            ]
            if len(executives) > 3:
                lines.append(f"- Plus {len(executives) - 3} additional executives")
            sections.append("### Executive Team\n" + "\n".join(lines))
        if products := state.get("products_data"):
            lines = [f"- {p.name}: {p.description}" for p in products[:3]]
            if len(products) > 3:
                lines.append(f"- Plus {len(products) - 3} additional products/services")
            sections.append("### Products & Offerings\n" + "\n".join(lines))
        if pricing := state.get("pricing_data"):
            sections.append(f"### Pricing & Fees\n{pricing.summary}")
        if market := state.get("market_position_data"):
            sections.append(f"### Market Positioning\n{market.summary}")
        if pitch := state.get("pitch_approach_data"):
            sections.append(f"### Likely Pitch Approach\n{pitch.summary}")
        if request.custom_queries:
            sections.append(f"### Additional Context/Queries\n{request.custom_queries}")

        return format_template(
            SUMMARY_PROMPT,
            {"competitor_name": request.competitor_name, "sections": "\n\n".join(sections)},
        )

    async def run(self, state: Mapping[str, Any], ctx: RunContext) -> dict[str, Any]:
        request: CompetitorAnalysisInput = state["input"]
        logger.info("[%s] Summarizing analysis for %s", ctx.correlation_id, request.competitor_name)
        summary = await self.complete(self.build_prompt(state, ctx), ctx)
        output = CompetitorAnalysisOutput(
            competitor=request.competitor_name,
            summary=summary.strip(),
            last_updated=datetime.now(timezone.utc).isoformat(),
            financial_performance=state.get("financial_data"),
            news_and_deals=state.get("news_data"),
            executive_team=state.get("executive_data"),
            products_offerings=state.get("products_data"),
            pricing=state.get("pricing_data"),
            market_positioning=state.get("market_position_data"),
            pitch_approach=state.get("pitch_approach_data"),
        )
        return {"output": output}


def default_nodes(
    *, model: str | None = None, client: anthropic.AsyncAnthropic | None = None
) -> dict[str, Node]:
    """Claude-backed research, pitch and summary nodes."""
    common: dict[str, Any] = {"model": model, "client": client}
    return {
        "financial": ResearchNode(
            "financial",
            channel="financial_data",
            prompt_template=FINANCIAL_PROMPT,
            parse=FinancialData.from_dict,
            system="You are a financial analyst skilled at researching companies.",
            max_tokens=1000,
            **common,
        ),
        "news": ResearchNode(
            "news",
            channel="news_data",
            prompt_template=NEWS_PROMPT,
            parse=_list_parser(NewsItem.from_dict),
            expect=list,
            topic="news",
            system="You are a business intelligence analyst who specializes in tracking company news and developments.",
            **common,
        ),
        "executive": ResearchNode(
            "executive",
            channel="executive_data",
            prompt_template=EXECUTIVE_PROMPT,
            parse=_list_parser(ExecutiveInfo.from_dict),
            expect=list,
            topic="leadership",
            system="You are a business researcher who specializes in corporate leadership teams.",
            **common,
        ),
        "products": ResearchNode(
            "products",
            channel="products_data",
            prompt_template=PRODUCTS_PROMPT,
            parse=_list_parser(ProductInfo.from_dict),
            expect=list,
            topic="offerings",
            system="You are a product analyst who specializes in comparing company offerings.",
            **common,
        ),
        "pricing": ResearchNode(
            "pricing",
            channel="pricing_data",
            prompt_template=PRICING_PROMPT,
            parse=PricingInfo.from_dict,
            system="You are a pricing strategist who analyzes how companies charge for their services.",
            max_tokens=1200,
            **common,
        ),
        "market_position": ResearchNode(
            "market_position",
            channel="market_position_data",
            prompt_template=MARKET_POSITION_PROMPT,
            parse=MarketPositionInfo.from_dict,
            system="You are a market strategist who analyzes competitive positioning.",
            **common,
        ),
        "pitch_approach": PitchApproachNode(**common),
        "summarize": SummarizerNode(**common),
    }


def build_graph(
    *,
    model: str | None = None,
    client: anthropic.AsyncAnthropic | None = None,
    overrides: Mapping[str, Node | NodeFn] | None = None,
) -> CompiledGraph:
    """Wire the competitor analysis graph.

    ``overrides`` replaces research/summary nodes by name (used for tests and
    alternative backends).
    """
    nodes: dict[str, Node | NodeFn] = dict(default_nodes(model=model, client=client))
    nodes.update(overrides or {})

    builder = StateGraph(SCHEMA, name=AGENT_NAME)
    builder.add_node("router", start_research).add_node("check_nodes", check_nodes)
    for name in [*RESEARCH_NODES, "summarize"]:
        builder.add_node(name, nodes[name])

    builder.add_edge(START, "router")
    builder.add_conditional_edge("router", focus_areas_router, list(RESEARCH_NODES))
    for name in RESEARCH_NODES:
        builder.add_edge(name, "check_nodes")
    builder.add_conditional_edge("check_nodes", check_errors, {"summarize": "summarize", "error": END})
    builder.add_edge("summarize", END)
    return builder.compile()


class CompetitorAnalysis:
    """Agent facade: accepts raw request payloads and always returns a state dict."""

    name = AGENT_NAME
    metadata = {"description": "Researches competitor companies and provides structured competitive intelligence"}

    def __init__(self, graph: CompiledGraph | None = None, **build_kwargs: Any) -> None:
        self.graph = graph or build_graph(**build_kwargs)

    @staticmethod
    def prepare(payload: Mapping[str, Any] | CompetitorAnalysisInput) -> dict[str, Any]:
        if isinstance(payload, CompetitorAnalysisInput):
            return {"input": payload}
        inner = payload.get("input", payload)
        if isinstance(inner, CompetitorAnalysisInput):
            return {"input": inner}
        return {"input": CompetitorAnalysisInput.from_dict(inner)}

    async def ainvoke(
        self, payload: Mapping[str, Any] | CompetitorAnalysisInput, config: Mapping[str, Any] | None = None
    ) -> dict[str, Any]:
        try:
            return await self.graph.ainvoke(self.prepare(payload), config)
        except Exception as e:
            logger.exception("Error running %s agent", self.name)
            return {"error": str(e) or f"Unknown error in {self.name} agent"}

    def invoke(
        self, payload: Mapping[str, Any] | CompetitorAnalysisInput, config: Mapping[str, Any] | None = None
    ) -> dict[str, Any]:
        try:
            return self.graph.invoke(self.prepare(payload), config)
        except Exception as e:
            logger.exception("Error running %s agent", self.name)
            return {"error": str(e) or f"Unknown error in {self.name} agent"}

    async def stream(
        self, payload: Mapping[str, Any] | CompetitorAnalysisInput, config: Mapping[str, Any] | None = None
    ) -> AsyncIterator[StepSnapshot | dict[str, Any]]:
        """Yield each superstep snapshot; a fatal error is yielded as ``{"error": ...}``."""
        try:
            async for snapshot in self.graph.stream(self.prepare(payload), config):
                yield snapshot
        except Exception as e:
            logger.exception("Error streaming from %s agent", self.name)
            yield {"error": str(e) or f"Unknown error in {self.name} agent"}
