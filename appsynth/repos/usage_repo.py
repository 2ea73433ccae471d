"""Usage repository -- append-only ledger of provider calls (ai_usage_log)."""

from uuid import UUID

from appsynth.repos.db import get_pool


async def record_usage(
    usage,
    *,
    operation: str,
    project_id: UUID | None = None,
    user_id: UUID | None = None,
) -> None:
    """Append one provider call's tokens and cost.

    *usage* is an :class:`~appsynth.services.provider_service.AIUsageResult`.
    """
    pool = await get_pool()
    await pool.execute(
        """
        INSERT INTO ai_usage_log
            (user_id, project_id, operation, provider, model,
             input_tokens, output_tokens, cost_usd)
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
        """,
        user_id,
        project_id,
        operation,
        usage.provider,
        usage.model,
        usage.prompt_tokens,
        usage.completion_tokens,
        usage.cost_usd,
    )


async def get_usage_totals(project_id: UUID) -> dict:
    """Summed tokens and cost for a project."""
    pool = await get_pool()
    row = await pool.fetchrow(
        """
        SELECT COUNT(*) AS calls,
               COALESCE(SUM(input_tokens), 0) AS input_tokens,
               COALESCE(SUM(output_tokens), 0) AS output_tokens,
               COALESCE(SUM(cost_usd), 0) AS cost_usd
        FROM ai_usage_log
        WHERE project_id = $1
        """,
        project_id,
    )
    return dict(row) if row else {"calls": 0, "input_tokens": 0, "output_tokens": 0, "cost_usd": 0}
