"""
Per-agent configuration records.

Everything the conversation engine needs to know about one tenant/agent:
business context, BANT fields and weights, SPIN phases, objection
reframes, style rules and model parameters. Records are versioned and
can be loaded from JSON.
"""

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from qualification.stage import SalesStage, SpinPhase

logger = logging.getLogger(__name__)


class BANTFieldConfig(BaseModel):
    """A BANT data point the conversation collects."""
    key: str
    label: str
    weight: float = Field(default=10, ge=0)
    source_phase: SpinPhase
    # Where the value lands in the structured stage data
    stage: SalesStage
    attribute: str

    @model_validator(mode="after")
    def _ordinal_stage(self):
        if self.stage.ordinal is None:
            raise ValueError(f"field {self.key} must map to an ordinal stage")
        return self


class TechniqueConfig(BaseModel):
    name: str
    application: str
    example: Optional[str] = None


class PhaseConfig(BaseModel):
    """Configuration of one SPIN phase."""
    phase: SpinPhase
    objective: str
    tone: str
    technique: TechniqueConfig
    data_to_collect: List[str] = Field(default_factory=list)
    advance_signals: List[str] = Field(default_factory=list)
    fallback_question: str


class TransitionConfig(BaseModel):
    """Vocabulary hinting that the lead needs an earlier phase."""
    back_to_situation: List[str] = Field(default_factory=list)
    back_to_problem: List[str] = Field(default_factory=list)


class ObjectionHandler(BaseModel):
    detection: List[str] = Field(default_factory=list)
    reframe: str
    follow_up: str


class StyleRules(BaseModel):
    banned_openers: List[str] = Field(default_factory=list)
    max_lines: int = Field(default=4, ge=1)
    banned_phrases: List[str] = Field(default_factory=list)
    broken_start_patterns: List[str] = Field(default_factory=list)
    safe_question: str = "Tell me more about that?"


class AIConfig(BaseModel):
    model: Optional[str] = None
    planner_temperature: float = Field(default=0.3, ge=0, le=2)
    writer_temperature: float = Field(default=0.9, ge=0, le=2)
    repair_temperature: float = Field(default=0.75, ge=0, le=2)
    max_tokens_planner: int = Field(default=1000, gt=0)
    max_tokens_writer: int = Field(default=300, gt=0)
    max_tokens_repair: int = Field(default=250, gt=0)


class BusinessConfig(BaseModel):
    company_name: str
    agent_name: str
    description: str
    value_proposition: str
    offerings: List[str] = Field(default_factory=list)
    target_sectors: List[str] = Field(default_factory=list)


class CTAConfig(BaseModel):
    description: str
    value_for_lead: str


class AgentConfig(BaseModel):
    """Versioned configuration of one qualification agent."""
    agent_id: str = "default"
    version: int = Field(default=1, ge=1)
    business: BusinessConfig
    cta: CTAConfig
    bant_fields: List[BANTFieldConfig]
    phases: Dict[SpinPhase, PhaseConfig]
    transitions: TransitionConfig = Field(default_factory=TransitionConfig)
    objection_handlers: Dict[str, ObjectionHandler] = Field(default_factory=dict)
    style_rules: StyleRules = Field(default_factory=StyleRules)
    ai: AIConfig = Field(default_factory=AIConfig)

    @model_validator(mode="after")
    def _consistent(self):
        missing = [p.value for p in SpinPhase if p not in self.phases]
        if missing:
            raise ValueError(f"missing phase configuration: {', '.join(missing)}")
        keys = [f.key for f in self.bant_fields]
        if len(keys) != len(set(keys)):
            raise ValueError("BANT field keys must be unique")
        known = set(keys)
        for phase, cfg in self.phases.items():
            if cfg.phase is not phase:
                raise ValueError(f"phase entry {phase.value} configures {cfg.phase.value}")
            unknown = [k for k in cfg.data_to_collect if k not in known]
            if unknown:
                raise ValueError(f"phase {phase.value} collects undefined fields: {unknown}")
        return self

    def field(self, key: str) -> Optional[BANTFieldConfig]:
        for f in self.bant_fields:
            if f.key == key:
                return f
        return None

    def phase(self, phase: SpinPhase) -> PhaseConfig:
        return self.phases[phase]

    def fields_for_phase(self, phase: SpinPhase) -> List[BANTFieldConfig]:
        keys = self.phases[phase].data_to_collect
        return [f for f in self.bant_fields if f.key in keys]

    def weights(self) -> Dict[str, float]:
        return {f.key: f.weight for f in self.bant_fields}


def default_agent_config() -> AgentConfig:
    """Built-in configuration for a generic B2B consultative agent."""
    fields = [
        BANTFieldConfig(key="pain_points", label="Main pain point", weight=20,
                        source_phase=SpinPhase.SITUATION,
                        stage=SalesStage.DISCOVERY, attribute="pain_points"),
        BANTFieldConfig(key="pain_urgency", label="How urgent the pain is", weight=5,
                        source_phase=SpinPhase.SITUATION,
                        stage=SalesStage.DISCOVERY, attribute="urgency"),
        BANTFieldConfig(key="budget", label="Budget range", weight=20,
                        source_phase=SpinPhase.PROBLEM,
                        stage=SalesStage.BUDGET, attribute="budget_range"),
        BANTFieldConfig(key="budget_confirmed", label="Budget approved", weight=5,
                        source_phase=SpinPhase.PROBLEM,
                        stage=SalesStage.BUDGET, attribute="budget_confirmed"),
        BANTFieldConfig(key="decision_maker", label="Decision power", weight=15,
                        source_phase=SpinPhase.IMPLICATION,
                        stage=SalesStage.AUTHORITY, attribute="decision_power"),
        BANTFieldConfig(key="role", label="Role in the company", weight=5,
                        source_phase=SpinPhase.IMPLICATION,
                        stage=SalesStage.AUTHORITY, attribute="role"),
        BANTFieldConfig(key="solution_fit", label="Fit with the offer", weight=15,
                        source_phase=SpinPhase.NEED_PAYOFF,
                        stage=SalesStage.NEED, attribute="solution_fit"),
        BANTFieldConfig(key="timeline", label="Implementation timeline", weight=15,
                        source_phase=SpinPhase.CLOSING,
                        stage=SalesStage.TIMELINE, attribute="implementation_timeline"),
    ]

    phases = {
        SpinPhase.SITUATION: PhaseConfig(
            phase=SpinPhase.SITUATION,
            objective="Understand how the lead works today and surface the first pain point",
            tone="curious and light",
            technique=TechniqueConfig(
                name="Strategic discovery",
                application="Ask questions that reveal weak spots without sounding like an attack",
                example="Referrals are great. And when referrals take a while to show up?",
            ),
            data_to_collect=["pain_points", "pain_urgency"],
            advance_signals=["problem", "struggle", "losing", "hard to", "difficult", "frustrating"],
            fallback_question="How does the process work today?",
        ),
        SpinPhase.PROBLEM: PhaseConfig(
            phase=SpinPhase.PROBLEM,
            objective="Make the cost of the pain concrete and learn what budget exists",
            tone="empathetic and direct",
            technique=TechniqueConfig(
                name="Cost of pain",
                application="Turn the abstract problem into a concrete loss of money, time or opportunities",
                example="Losing two projects a month is real money left on the table.",
            ),
            data_to_collect=["budget", "budget_confirmed"],
            advance_signals=["costs us", "we lose", "budget", "invest", "spend"],
            fallback_question="Does that scenario vary much?",
        ),
        SpinPhase.IMPLICATION: PhaseConfig(
            phase=SpinPhase.IMPLICATION,
            objective="Explore the consequences and find out who decides",
            tone="serious and consultative",
            technique=TechniqueConfig(
                name="Consequence chain",
                application="Connect the pain to growth, team and revenue consequences",
            ),
            data_to_collect=["decision_maker", "role"],
            advance_signals=["i decide", "my partner", "the board", "impact", "affects"],
            fallback_question="How much does that impact results?",
        ),
        SpinPhase.NEED_PAYOFF: PhaseConfig(
            phase=SpinPhase.NEED_PAYOFF,
            objective="Let the lead describe the value of solving the problem",
            tone="optimistic and concrete",
            technique=TechniqueConfig(
                name="Future picture",
                application="Have the lead picture the situation with the problem solved",
            ),
            data_to_collect=["solution_fit"],
            advance_signals=["that would help", "makes sense", "interesting", "we need", "sounds good"],
            fallback_question="What would change if you solved this?",
        ),
        SpinPhase.CLOSING: PhaseConfig(
            phase=SpinPhase.CLOSING,
            objective="Agree on a timeline and book the next step",
            tone="confident and simple",
            technique=TechniqueConfig(
                name="Double alternative",
                application="Do not ask for permission; offer two concrete slots",
                example="Tuesday at 2pm or Thursday at 10am?",
            ),
            data_to_collect=["timeline"],
            advance_signals=["schedule", "book", "call", "meeting", "when can"],
            fallback_question="Can we talk about this?",
        ),
    }

    return AgentConfig(
        business=BusinessConfig(
            company_name="Acme Growth",
            agent_name="Ana",
            description="Lead generation and sales process consultancy for small B2B companies",
            value_proposition="Predictable pipeline without depending on referrals",
            offerings=["Lead generation", "Sales process diagnosis", "CRM setup"],
            target_sectors=["solar", "software", "services"],
        ),
        cta=CTAConfig(
            description="30 minute diagnostic call",
            value_for_lead="A map of where the pipeline is leaking",
        ),
        bant_fields=fields,
        phases=phases,
        transitions=TransitionConfig(
            back_to_situation=["don't understand", "what do you do", "who are you"],
            back_to_problem=["we don't have that problem", "not a problem", "that's fine for us"],
        ),
        objection_handlers={
            "price": ObjectionHandler(
                detection=["expensive", "price", "cost too much", "can't afford"],
                reframe="Compare the investment with what the problem already costs each month",
                follow_up="Ask how much the current situation costs per month",
            ),
            "time": ObjectionHandler(
                detection=["no time", "busy", "later", "not now"],
                reframe="Acknowledge the workload and show the call saves time",
                follow_up="Offer a short slot at their convenience",
            ),
            "think": ObjectionHandler(
                detection=["think about it", "let me think", "need to think"],
                reframe="Validate the caution and ask what is still unclear",
                follow_up="Ask which point they want to think through",
            ),
            "already_have": ObjectionHandler(
                detection=["already have", "already use", "we have someone"],
                reframe="Respect the current solution and ask what it does not cover",
                follow_up="Ask what they would improve in it",
            ),
        },
        style_rules=StyleRules(
            banned_openers=["Understood", "Got it", "Perfect", "Great", "Cool", "Right", "Sure", "Ok", "Okay", "Absolutely"],
            max_lines=4,
            banned_phrases=["add value", "tailored solutions", "strategic partnership", "synergy"],
            broken_start_patterns=[
                r"^that\s+(you|your\s+company|it)\b",
                r"^and\s+(that|how|when|where)\b",
                r"^but\s+(that|how)\b",
                r"^so\s+(that|how)\b",
            ],
        ),
    )


def load_agent_config(path: Optional[str] = None) -> AgentConfig:
    """
    Load an agent configuration from a JSON file, or the built-in default.

    Raises:
        pydantic.ValidationError: the file content is not a valid config
    """
    if not path:
        return default_agent_config()
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    config = AgentConfig.model_validate(raw)
    logger.info(f"Agent config loaded: {config.agent_id} v{config.version} from {path}")
    return config
