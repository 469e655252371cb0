"""
Prompt Templates for the conversation engines.

Builds the planner briefing, the writer/repair messages for the
consultative flow, and the analyzer/responder prompts for the support flow.
"""

from typing import Any, Dict, List, Optional

from config.agent_config import AgentConfig, BANTFieldConfig, PhaseConfig
from qualification.archetypes import ArchetypeProfile
from qualification.stage import SpinPhase

from .history import TurnWindow

SECTION = "=" * 60

PLANNER_SCHEMA = """{
  "lead_analysis": {
    "summary": "what the lead communicated",
    "sentiment": "positive|neutral|negative|resistant",
    "intent": "question|answer|objection|interest",
    "pain_mentioned": "pain or problem mentioned, or null"
  },
  "phase_decision": {
    "should_advance": true/false,
    "reason": "why advance or stay"
  },
  "extracted_data": {
%s
  },
  "writer_instructions": {
    "response_type": "exploration|validation|deepening|transition|closing",
    "hook": "how to mirror/validate what the lead said",
    "fact": "which insight or connection to make",
    "question": "the KIND of question to ask (not the text)",
    "target_field": "BANT field the question should collect",
    "tone": "tone for this phase and archetype"
  },
  "objection": "%s|null",
  "tone_directives": ["tone directives for the writer"],
  "avoid": ["what NOT to do for this archetype"]
}"""


def _section(title: str, body: str) -> str:
    return f"{SECTION}\n{title}\n{SECTION}\n{body}\n"


class PromptTemplates:
    """
    Manages prompts for the consultative and support engines.

    All methods are pure; they only format configuration and state.
    """

    # ── Consultative flow ────────────────────────────────

    @staticmethod
    def format_bant_status(
        fields: List[BANTFieldConfig],
        values: Dict[str, Any],
    ) -> str:
        lines = []
        for f in fields:
            value = values.get(f.key)
            mark = "x" if value not in (None, "") else " "
            shown = value if value not in (None, "") else "(missing)"
            lines.append(f"[{mark}] {f.label} ({f.key}): {shown}")
        return "\n".join(lines)

    @staticmethod
    def technique_instructions(phase_config: PhaseConfig, config: AgentConfig) -> str:
        technique = phase_config.technique
        body = f"{technique.application}\n"
        if technique.example:
            body += f"Example: {technique.example}\n"
        if phase_config.phase is SpinPhase.CLOSING:
            body += (
                f"DELIVERABLE: {config.cta.value_for_lead}\n"
                f"CTA: {config.cta.description}\n"
                "Do not ask for permission. Offer two concrete options.\n"
            )
        body += f"Signals to advance: {', '.join(phase_config.advance_signals) or 'none'}"
        return _section(f"TECHNIQUE: {technique.name}", body)

    @staticmethod
    def objection_instructions(
        objection: Optional[str],
        config: AgentConfig,
        archetype: ArchetypeProfile,
    ) -> str:
        if not objection:
            return ""
        handler = config.objection_handlers.get(objection)
        if not handler:
            return ""
        body = (
            f"How to reframe: {handler.reframe}\n"
            f"Tone for {archetype.name}: {archetype.tone_style}\n"
            f"Follow-up: {handler.follow_up}"
        )
        return _section(f"OBJECTION DETECTED: {objection.upper()}", body)

    @staticmethod
    def style_prohibitions(config: AgentConfig) -> str:
        rules = config.style_rules
        openers = ", ".join(rules.banned_openers[:5]) or "generic acknowledgements"
        return (
            f"- Do NOT start with: {openers}\n"
            "- Do NOT ask more than 1 question\n"
            f"- Do NOT exceed {rules.max_lines} lines of content\n"
            "- Do NOT use generic corporate language"
        )

    @staticmethod
    def format_template(phase: SpinPhase, archetype: ArchetypeProfile) -> str:
        if phase is SpinPhase.CLOSING:
            return (
                f"[HOOK in the {archetype.name} tone]\n\n"
                "[DELIVERABLE: what the lead GETS from the meeting]\n\n"
                '[CLOSE: "Tuesday at 2pm or Thursday at 10am?"]'
            )
        return (
            f"[HOOK in the {archetype.name} tone, 3-10 words]\n\n"
            f"[FACT/INSIGHT in the {archetype.name} tone, 1-2 sentences]\n\n"
            f"[QUESTION in the {archetype.name} tone]?"
        )

    @classmethod
    def build_planner_prompt(
        cls,
        config: AgentConfig,
        phase_config: PhaseConfig,
        missing_fields: List[BANTFieldConfig],
        archetype: ArchetypeProfile,
        window: TurnWindow,
        bant_values: Dict[str, Any],
        user_message: str,
        advance_signals: Optional[List[str]] = None,
        regression_hint: Optional[Dict[str, Any]] = None,
    ) -> str:
        business = config.business
        missing = "\n".join(f"- {f.key}: {f.label}" for f in missing_fields) or "- nothing outstanding"
        objections = "|".join(config.objection_handlers) or "none"
        extracted = ",\n".join(f'    "{f.key}": "extracted value or null"' for f in config.bant_fields)

        evidence = []
        if advance_signals:
            evidence.append(f"Advance signals found: {', '.join(advance_signals)}")
        if regression_hint:
            evidence.append(
                f"Possible regression towards {regression_hint['target']}: "
                f"{', '.join(regression_hint['signals'])} (advisory, do not go back)"
            )

        parts = [
            f"You are the planner for {business.agent_name}, a consultative sales agent at "
            f"{business.company_name}. You do not write the reply; you brief the writer.\n",
            _section("BUSINESS", (
                f"{business.description}\n"
                f"Value proposition: {business.value_proposition}\n"
                f"Offerings: {', '.join(business.offerings)}\n"
                f"CTA: {config.cta.description}"
            )),
            _section(f"CURRENT PHASE: {phase_config.phase.value.upper()}", (
                f"Objective: {phase_config.objective}\n"
                f"Tone: {phase_config.tone}\n"
                f"Technique: {phase_config.technique.name}\n"
                f"Advance signals: {', '.join(phase_config.advance_signals)}"
            )),
            _section("DATA STILL TO COLLECT IN THIS PHASE", missing),
            _section(f"LEAD ARCHETYPE: {archetype.name}", (
                f"Tone: {archetype.tone_style}\n"
                f"How to talk: {archetype.voice}\n"
                f"Triggers: {', '.join(archetype.triggers)}\n"
                f"Avoid: {', '.join(archetype.avoid)}"
            )),
            _section("RECENT HISTORY", window.format(6) or "(first message)"),
            _section("BANT STATUS", cls.format_bant_status(config.bant_fields, bant_values)),
        ]
        if evidence:
            parts.append(_section("SIGNALS", "\n".join(evidence)))
        parts.append(_section("LEAD MESSAGE", f'"{user_message}"'))
        parts.append(_section("INSTRUCTIONS", (
            "1. Analyse the message: what is the lead saying, with what sentiment and intent?\n"
            "2. Extract any BANT data mentioned (even indirectly); use null when absent\n"
            "3. Decide whether to advance the phase (did the lead acknowledge the pain?)\n"
            "4. Write a BRIEFING for the writer's next message\n\n"
            "Respond in JSON:\n" + PLANNER_SCHEMA % (extracted, objections)
        )))
        return "\n".join(parts)

    @classmethod
    def build_writer_system_prompt(
        cls,
        config: AgentConfig,
        phase_config: PhaseConfig,
        archetype: ArchetypeProfile,
        plan: Any,
        target_field: Optional[BANTFieldConfig],
    ) -> str:
        business = config.business
        wi = plan.writer_instructions
        target = f"{target_field.label} ({target_field.key})" if target_field else "the next missing detail"
        parts = [
            f"You are {business.agent_name} from {business.company_name}. "
            f"You write short chat messages to a lead. {business.value_proposition}.\n",
            _section("BRIEFING", (
                f"Response type: {wi.response_type}\n"
                f"HOOK: {wi.hook}\n"
                f"FACT: {wi.fact}\n"
                f"QUESTION: {wi.question}\n"
                f"The question must collect: {target}\n"
                f"Tone: {wi.tone or phase_config.tone}; {archetype.tone_style}\n"
                f"Tone directives: {'; '.join(plan.tone_directives) or 'none'}\n"
                f"Avoid: {', '.join(list(plan.avoid) + list(archetype.avoid))}"
            )),
            cls.technique_instructions(phase_config, config),
            cls.objection_instructions(plan.objection, config, archetype),
            _section("FORMAT", cls.format_template(phase_config.phase, archetype)),
            _section("PROHIBITED", cls.style_prohibitions(config)),
            "Reply with the message text only.",
        ]
        return "\n".join(p for p in parts if p)

    @classmethod
    def build_writer_messages(
        cls,
        system_prompt: str,
        window: TurnWindow,
    ) -> List[Dict[str, str]]:
        return [{"role": "system", "content": system_prompt}] + window.as_messages(6)

    @classmethod
    def build_repair_messages(
        cls,
        config: AgentConfig,
        phase_config: PhaseConfig,
        draft: str,
        instructions: List[str],
        user_message: str,
    ) -> List[Dict[str, str]]:
        fixes = "\n".join(f"- {i}" for i in instructions)
        prompt = (
            "Rewrite this chat message so it follows the rules.\n\n"
            f'Lead said: "{user_message}"\n'
            f'Draft: "{draft}"\n\n'
            f"Problems to fix:\n{fixes}\n\n"
            f"Rules:\n{cls.style_prohibitions(config)}\n"
            f"- Keep the phase objective: {phase_config.objective}\n\n"
            "Return only the rewritten message."
        )
        return [{"role": "user", "content": prompt}]

    # ── Support flow ─────────────────────────────────────

    @staticmethod
    def build_support_analyzer_prompt(
        config: AgentConfig,
        state: str,
        categories: Dict[str, Dict[str, Any]],
        window: TurnWindow,
        user_message: str,
    ) -> str:
        category_list = "|".join(categories)
        return "\n".join([
            f"You analyse customer support messages for {config.business.company_name}.\n",
            _section("CURRENT STATE", state),
            _section("RECENT HISTORY", window.format(6, assistant_label="SUPPORT") or "(first message)"),
            _section("CUSTOMER MESSAGE", f'"{user_message}"'),
            _section("INSTRUCTIONS", (
                "Respond in JSON:\n"
                "{\n"
                '  "intent": "greeting|question|complaint|request|feedback|farewell",\n'
                f'  "category": "{category_list}",\n'
                '  "priority": "low|medium|high|urgent",\n'
                '  "sentiment": "positive|neutral|negative|frustrated",\n'
                '  "issue_summary": "one sentence or null",\n'
                '  "needs_clarification": true/false,\n'
                '  "can_resolve": true/false,\n'
                '  "should_escalate": true/false,\n'
                '  "escalate_reason": "why, or null"\n'
                "}"
            )),
        ])

    @staticmethod
    def build_support_responder_messages(
        config: AgentConfig,
        state: str,
        analysis: Dict[str, Any],
        window: TurnWindow,
        guidance: str = "",
    ) -> List[Dict[str, str]]:
        system = "\n".join([
            f"You are {config.business.agent_name}, the support assistant of "
            f"{config.business.company_name}. Be warm, clear and brief.",
            _section(f"STATE: {state}", guidance or "Help the customer with their issue"),
            _section("ANALYSIS", (
                f"Intent: {analysis.get('intent')}\n"
                f"Sentiment: {analysis.get('sentiment')}\n"
                f"Category: {analysis.get('category')}\n"
                f"Priority: {analysis.get('priority')}\n"
                f"Summary: {analysis.get('issue_summary') or 'not identified yet'}"
            )),
            _section("RULES", (
                "- At most 8 lines\n"
                "- Never sell, upgrade or offer discounts\n"
                "- Never ask about budget, decision makers or purchase timing\n"
                "- No policy or bureaucratic language"
            )),
            "Reply with the message text only.",
        ])
        return [{"role": "system", "content": system}] + window.as_messages(6)

    @staticmethod
    def build_support_repair_messages(draft: str, instructions: List[str]) -> List[Dict[str, str]]:
        fixes = "\n".join(f"- {i}" for i in instructions)
        return [{
            "role": "user",
            "content": (
                "Rewrite this support message so it fixes the problems below.\n\n"
                f'Draft: "{draft}"\n\nProblems:\n{fixes}\n\nReturn only the rewritten message.'
            ),
        }]
