"""Stage keys.

Each LLM-backed stage reads its system instruction from the settings
store under one of these keys.
"""


class Stage:
    CLASSIFY = "sys_prompt_decision_v2"
    DESIGN = "sys_prompt_design_v2"
    REQUIREMENTS = "sys_prompt_requirements_v2"
    PHASE_PLANNER = "sys_prompt_phase_planner_v2"
    STEP_PLANNER = "sys_prompt_planner_v2"
    BUILDER = "sys_prompt_builder_v2"
    REPAIR = "sys_prompt_repair_v2"
    SQL = "sys_prompt_sql_v2"
    TITLE = "sys_prompt_title_v2"


class MessageKey:
    """Logical keys for status messages upserted during a build."""

    INTENT = "intent"
    CHAT = "chat_response"
    ACTION = "action_required"
    PLAN = "plan"
    REPAIR = "repair"
    RESULT = "build_result"

    @staticmethod
    def phase(index: int) -> str:
        return f"phase:{index}"
