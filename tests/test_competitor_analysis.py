"""Tests for the competitor analysis recipe."""

import pytest

from researchgraph.core.node import END, Node
from researchgraph.recipes.competitor_analysis import (
    RESEARCH_NODES,
    CompetitorAnalysis,
    build_graph,
    check_errors,
    focus_areas_router,
    select_research_nodes,
)
from researchgraph.recipes.competitor_models import (
    CompetitorAnalysisInput,
    CompetitorAnalysisOutput,
    FinancialData,
    FocusAreas,
    MarketPositionInfo,
    NewsItem,
    PitchApproachInfo,
)

DATA_NODES = [n for n in RESEARCH_NODES if n != "pitch_approach"]


class FakeResearch(Node):
    """Writes a canned value to the node's own slot and counts calls."""

    def __init__(self, name: str, fail: bool = False):
        super().__init__(name)
        self.calls = 0
        self._fail = fail

    async def run(self, state, ctx):
        self.calls += 1
        if self._fail:
            raise RuntimeError(f"{self.name} search failed")
        return {RESEARCH_NODES[self.name][1]: f"{self.name} findings"}


class FakeSummary(Node):
    def __init__(self):
        super().__init__("summarize")
        self.calls = 0
        self.seen = None

    async def run(self, state, ctx):
        self.calls += 1
        self.seen = dict(state)
        return {"output": f"summary of {state['input'].competitor_name}"}


def _fakes(failing: set[str] = frozenset()) -> dict[str, Node]:
    nodes: dict[str, Node] = {name: FakeResearch(name, fail=name in failing) for name in RESEARCH_NODES}
    nodes["summarize"] = FakeSummary()
    return nodes


class TestFocusDecisionTable:
    def test_default_runs_everything(self):
        assert select_research_nodes(None) == list(RESEARCH_NODES)

    def test_only_flagged_data_nodes(self):
        focus = FocusAreas.only("financial", "pricing")
        assert select_research_nodes(focus) == ["financial", "pricing"]

    def test_pitch_with_exactly_three_others_included(self):
        focus = FocusAreas.only("news", "executive_team", "pricing", "pitch_approach")
        assert select_research_nodes(focus) == ["news", "executive", "pricing", "pitch_approach"]

    def test_pitch_with_two_unrelated_others_excluded(self):
        focus = FocusAreas.only("news", "executive_team", "pitch_approach")
        assert select_research_nodes(focus) == ["news", "executive"]

    def test_pitch_with_market_and_products_included(self):
        focus = FocusAreas.only("market_position", "products", "pitch_approach")
        assert "pitch_approach" in select_research_nodes(focus)

    def test_pitch_with_market_and_financial_included(self):
        focus = FocusAreas.only("market_position", "financial", "pitch_approach")
        assert "pitch_approach" in select_research_nodes(focus)

    def test_pitch_with_market_alone_excluded(self):
        focus = FocusAreas.only("market_position", "pricing", "pitch_approach")
        assert select_research_nodes(focus) == ["pricing", "market_position"]

    def test_pitch_with_products_and_financial_but_no_market_excluded(self):
        focus = FocusAreas.only("products", "financial", "pitch_approach")
        assert "pitch_approach" not in select_research_nodes(focus)

    def test_pitch_needs_its_own_flag(self):
        focus = FocusAreas.only("financial", "news", "products", "pricing")
        assert "pitch_approach" not in select_research_nodes(focus)

    def test_pitch_alone_excluded(self):
        assert select_research_nodes(FocusAreas.only("pitch_approach")) == []

    def test_unknown_focus_area_rejected(self):
        with pytest.raises(ValueError, match="bogus"):
            FocusAreas.only("bogus")

    def test_router_reads_input_channel(self):
        request = CompetitorAnalysisInput("Acme", focus_areas=FocusAreas.only("news"))
        assert focus_areas_router({"input": request}) == ["news"]


class TestCheckErrors:
    def test_error_routes_to_error(self):
        assert check_errors({"error": "news: boom"}) == "error"

    def test_no_error_routes_to_summarize(self):
        assert check_errors({}) == "summarize"


class TestInputParsing:
    def test_camel_case_payload(self):
        request = CompetitorAnalysisInput.from_dict(
            {
                "competitorName": "Example Bank Corp",
                "website": "https://www.examplebank.com",
                "pitchContext": {"industry": "Financial Services", "service": "Corporate Banking"},
                "focusAreas": {"financial": True, "marketPosition": True},
                "newsTimeFrame": 6,
                "customQueries": "Digital transformation",
            }
        )
        assert request.competitor_name == "Example Bank Corp"
        assert request.pitch_context.industry == "Financial Services"
        assert request.focus_areas == FocusAreas.only("financial", "market_position")
        assert request.news_time_frame == 6
        assert request.custom_queries == "Digital transformation"

    def test_missing_name_rejected(self):
        with pytest.raises(ValueError, match="competitor_name"):
            CompetitorAnalysisInput.from_dict({"website": "x"})

    def test_defaults(self):
        request = CompetitorAnalysisInput.from_dict({"competitor_name": "Acme"})
        assert request.focus_areas is None
        assert request.news_time_frame == 12


class TestGraphWiring:
    def test_compiles_with_expected_structure(self):
        graph = build_graph(overrides=_fakes())
        info = graph.describe()
        assert info["start"] == "router"
        assert info["conditional"]["router"] == {n: n for n in RESEARCH_NODES}
        assert info["conditional"]["check_nodes"] == {"summarize": "summarize", "error": END}
        assert graph.predecessors("check_nodes") == set(RESEARCH_NODES)

    def test_levels(self):
        levels = build_graph(overrides=_fakes()).levels
        assert levels[0] == ("router",)
        assert set(levels[1]) == set(RESEARCH_NODES)
        assert levels[2] == ("check_nodes",)
        assert levels[3] == ("summarize",)


class TestAgent:
    @pytest.mark.asyncio
    async def test_fan_out_runs_selected_branches_only(self):
        nodes = _fakes()
        agent = CompetitorAnalysis(build_graph(overrides=nodes))
        state = await agent.ainvoke(
            {"competitorName": "Acme", "focusAreas": {"financial": True, "news": False, "pricing": True}}
        )
        assert state["financial_data"] == "financial findings"
        assert state["pricing_data"] == "pricing findings"
        assert "news_data" not in state
        assert nodes["news"].calls == 0
        assert state["output"] == "summary of Acme"

    @pytest.mark.asyncio
    async def test_happy_path_all_flags(self):
        nodes = _fakes()
        agent = CompetitorAnalysis(build_graph(overrides=nodes))
        state = await agent.ainvoke({"input": {"competitor_name": "Acme"}})
        assert "error" not in state
        assert state["output"] == "summary of Acme"
        assert all(nodes[n].calls == 1 for n in RESEARCH_NODES)
        assert nodes["summarize"].calls == 1
        seen = nodes["summarize"].seen
        assert all(channel in seen for _, channel in RESEARCH_NODES.values())

    @pytest.mark.asyncio
    async def test_failed_branch_diverts_to_error(self):
        nodes = _fakes(failing={"news"})
        agent = CompetitorAnalysis(build_graph(overrides=nodes))
        state = await agent.ainvoke({"competitor_name": "Acme"})
        assert state["error"] == "news: news search failed"
        assert nodes["summarize"].calls == 0
        assert "output" not in state
        for name in DATA_NODES:
            if name != "news":
                assert state[RESEARCH_NODES[name][1]] == f"{name} findings"

    @pytest.mark.asyncio
    async def test_no_branches_selected_returns_error_state(self):
        agent = CompetitorAnalysis(build_graph(overrides=_fakes()))
        state = await agent.ainvoke({"competitor_name": "Acme", "focus_areas": {"pitch_approach": True}})
        assert "END" in state["error"]

    @pytest.mark.asyncio
    async def test_invalid_input_returns_error_state(self):
        agent = CompetitorAnalysis(build_graph(overrides=_fakes()))
        state = await agent.ainvoke({"website": "https://example.com"})
        assert "competitor_name is required" in state["error"]

    def test_invoke_sync(self):
        agent = CompetitorAnalysis(build_graph(overrides=_fakes()))
        state = agent.invoke(CompetitorAnalysisInput("Acme"), {"thread_id": "t-1"})
        assert state["output"] == "summary of Acme"

    @pytest.mark.asyncio
    async def test_stream_yields_supersteps(self):
        agent = CompetitorAnalysis(build_graph(overrides=_fakes()))
        request = CompetitorAnalysisInput("Acme", focus_areas=FocusAreas.only("news", "pricing"))
        snaps = [s async for s in agent.stream(request)]
        assert [s.nodes for s in snaps] == [("router",), ("news", "pricing"), ("check_nodes",), ("summarize",)]

    @pytest.mark.asyncio
    async def test_stream_fatal_error_yields_error_dict(self):
        agent = CompetitorAnalysis(build_graph(overrides=_fakes()))
        request = CompetitorAnalysisInput("Acme", focus_areas=FocusAreas.only())
        items = [s async for s in agent.stream(request)]
        assert isinstance(items[-1], dict)
        assert "error" in items[-1]


def _responder(kwargs):
    """Answer each research prompt with a plausible JSON payload."""
    prompt = kwargs["messages"][0]["content"]
    if prompt.startswith("Research the financial"):
        return {"revenue": "$1B", "summary": "Healthy margins"}
    if prompt.startswith("Research recent news"):
        return [{"title": f"Deal {i}", "date": "2025-01-0{i}", "summary": "Won client"} for i in range(1, 6)]
    if prompt.startswith("Identify the key executives"):
        return [{"name": "Ada", "title": "CEO", "linkedInUrl": "https://linkedin.com/in/ada"}]
    if prompt.startswith("Describe the main products"):
        return [{"name": "Ledger", "description": "Core banking", "uniqueFeatures": ["APIs"]}]
    if prompt.startswith("Analyze the pricing"):
        return {"model": "subscription", "summary": "Premium pricing"}
    if prompt.startswith("Analyze the market positioning"):
        return {"targetSegments": ["mid-market"], "summary": "Challenger brand"}
    if prompt.startswith("Infer the pitch approach"):
        return {"likelyThemes": ["speed"], "summary": "Lead with speed"}
    return "Acme is a fast-moving challenger."


class TestClaudeBackedAgent:
    @pytest.mark.asyncio
    async def test_end_to_end_with_fake_client(self, fake_client):
        client = fake_client(_responder)
        agent = CompetitorAnalysis(client=client, model="claude-test")
        state = await agent.ainvoke(
            {
                "competitorName": "Acme",
                "website": "https://acme.example",
                "pitchContext": {"industry": "Banking"},
                "customQueries": "Focus on APIs",
            },
            {"correlation_id": "e2e"},
        )
        assert "error" not in state
        output = state["output"]
        assert isinstance(output, CompetitorAnalysisOutput)
        assert output.competitor == "Acme"
        assert output.summary == "Acme is a fast-moving challenger."
        assert output.version == 1
        assert output.financial_performance == FinancialData(summary="Healthy margins", revenue="$1B")
        assert len(output.news_and_deals) == 5
        assert output.executive_team[0].linked_in_url == "https://linkedin.com/in/ada"
        assert output.market_positioning == MarketPositionInfo(summary="Challenger brand", target_segments=["mid-market"])
        # Pitch approach runs in the same superstep as the data branches, so it sees no research yet.
        assert output.pitch_approach == PitchApproachInfo(
            summary="Insufficient data to analyze potential pitch approach"
        )

        calls = client.messages.calls
        assert len(calls) == 7
        assert all(c["model"] == "claude-test" for c in calls)
        summary_prompt = calls[-1]["messages"][0]["content"]
        assert "- Plus 2 additional news items" in summary_prompt
        assert "### Additional Context/Queries\nFocus on APIs" in summary_prompt
        assert "Industry context" in calls[0]["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_malformed_branch_output_takes_error_path(self, fake_client):
        def responder(kwargs):
            if kwargs["messages"][0]["content"].startswith("Analyze the pricing"):
                return "no idea"
            return _responder(kwargs)

        agent = CompetitorAnalysis(client=fake_client(responder))
        state = await agent.ainvoke({"competitor_name": "Acme", "focus_areas": {"pricing": True, "news": True}})
        assert state["error"].startswith("pricing: ")
        assert len(state["news_data"]) == 5
        assert "output" not in state

    def test_output_to_dict_drops_empty_sections(self):
        output = CompetitorAnalysisOutput(
            competitor="Acme",
            summary="s",
            last_updated="2025-01-01T00:00:00+00:00",
            news_and_deals=[NewsItem(title="t", date="d", summary="s")],
        )
        data = output.to_dict()
        assert "pricing" not in data
        assert data["news_and_deals"][0]["title"] == "t"
