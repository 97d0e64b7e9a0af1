"""Prompt builders and the progress heuristics that feed them."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Sequence

from habitloop.domain.models import CompletionStatus, DailyTask, Goal, JournalEntry, UserData


class DifficultyAdjustment(str, Enum):
    START = "start"
    INCREASE = "increase"
    MAINTAIN = "maintain"
    SIMPLIFY = "simplify"


DIFFICULTY_GUIDELINES = {
    DifficultyAdjustment.START: "Start with beginner-friendly tasks",
    DifficultyAdjustment.INCREASE: "User is handling tasks well - increase difficulty",
    DifficultyAdjustment.MAINTAIN: "Maintain current difficulty but optimize timing",
    DifficultyAdjustment.SIMPLIFY: "Simplify tasks and focus on building consistency",
}


def completion_rate(tasks: Sequence[DailyTask]) -> Optional[float]:
    """Share of completed tasks; ``None`` when there is nothing to measure."""
    if not tasks:
        return None
    return sum(1 for task in tasks if task.is_completed) / len(tasks)


def difficulty_adjustment(rate: Optional[float]) -> DifficultyAdjustment:
    if rate is None:
        return DifficultyAdjustment.START
    if rate >= 0.8:
        return DifficultyAdjustment.INCREASE
    if rate >= 0.5:
        return DifficultyAdjustment.MAINTAIN
    return DifficultyAdjustment.SIMPLIFY


def progressive_intensity(day: int) -> int:
    """Percent difficulty relative to day one: +5% every three days."""
    return 100 + ((max(day, 1) - 1) // 3) * 5


def profile_section(user_data: UserData) -> str:
    lines: List[str] = []
    if user_data.age is not None:
        lines.append(f"Age: {user_data.age}")
    if user_data.height is not None:
        lines.append(f"Height: {user_data.height:g} cm")
    if user_data.weight is not None:
        lines.append(f"Weight: {user_data.weight:g} kg")
    if user_data.sex:
        lines.append(f"Sex: {user_data.sex}")
    return "\n".join(lines) if lines else "No specific user data available"


def goal_progress(user_data: UserData, goal_title: str) -> str:
    """Completion and on-time rates for one goal across retained history."""
    tasks = user_data.task_history(goal_title)
    rate = completion_rate(tasks)
    if rate is None:
        return ""
    analysis = f"Completion rate: {int(rate * 100)}%"
    timed_done = [task for task in tasks if task.is_completed and task.scheduled_time is not None]
    if timed_done:
        on_time = sum(1 for task in timed_done if task.completion_status == CompletionStatus.ON_TIME)
        analysis += f"\nOn-time completion: {int(on_time / len(timed_done) * 100)}%"
    return analysis


PLAN_SYSTEM_PROMPT = (
    "You are an expert habit coach who creates detailed, actionable plans. "
    "For each goal, explain a clear progression strategy the way a coach would, "
    "with specific methods and measurable milestones. "
    "Respond with ONLY valid JSON matching the requested structure."
)

TASKS_SYSTEM_PROMPT = (
    "You are a motivating personal coach that creates engaging daily schedules. "
    "Only schedule tasks during the user's active hours, spaced through the day, "
    "using 'H:MM AM/PM' times and one relevant emoji per task. "
    "Respond with ONLY valid JSON: "
    '{"dailyTasks": [{"goalTitle": "exact goal title", "tasks": '
    '[{"description": "...", "time": "9:00 AM", "emoji": "..."}]}]}'
)

SUMMARY_SYSTEM_PROMPT = (
    "You are a supportive coach focused on progress and consistency. "
    "Write one or two short, conversational sentences. "
    "Never use quotes, emojis, or pop culture references."
)

WEEKLY_SYSTEM_PROMPT = (
    "You review a week of journal entries for a habit-building app. "
    "Respond with ONLY valid JSON: "
    '{"analysis": "...", "suggestedGoals": ["goal 1", "goal 2", "goal 3"]}'
)


def build_plan_prompt(goal_titles: Sequence[str], duration: int) -> str:
    goals_block = "\n".join(f"- {title}" for title in goal_titles)
    return (
        f"Create a detailed {duration}-day plan for each of these goals:\n\n"
        f"{goals_block}\n\n"
        "For each goal, break it into 3-4 specific, measurable sub-plans that start with an "
        "action verb and build a sustainable daily or weekly habit within the timeframe.\n\n"
        "Return JSON shaped as:\n"
        '{"goals": [{"title": "exact goal title", "strategy": "brief coaching approach", '
        '"subPlans": ["Specific task 1", "Specific task 2", "Specific task 3"]}]}'
    )


def build_tasks_prompt(
    *,
    goals: Sequence[Goal],
    day: int,
    previous_tasks: Sequence[DailyTask],
    wake_time: str,
    sleep_time: str,
    profile: str,
    progress: Dict[str, str],
    adjustment: DifficultyAdjustment,
) -> str:
    lines = [
        f"Create a progressive, personalized daily schedule for Day {day}.",
        "",
        "User Profile:",
        profile,
        "",
        "Goals and Progress:",
    ]
    for goal in goals:
        lines.append(f"- {goal.title} {goal.emoji}".rstrip())
        if goal.strategy:
            lines.append(f"  Strategy: {goal.strategy}")
        goal_stats = progress.get(goal.title)
        if goal_stats:
            lines.append(f"  Progress: {goal_stats}")
        missed = [task for task in previous_tasks if task.goal_title == goal.title and not task.is_completed]
        if missed:
            lines.append("  Incomplete tasks from previous day:")
            lines.extend(f"    - {task.task}" for task in missed)
    lines += [
        "",
        "Guidelines:",
        "1. Highly specific, actionable tasks that fit the user's routine, with metrics where possible.",
        f"2. Day {day} tasks should be {progressive_intensity(day)}% as challenging as the first days.",
        f"3. Adapt to completion rate: {DIFFICULTY_GUIDELINES[adjustment]}.",
        f"4. Space tasks through active hours ({wake_time} to {sleep_time}).",
        "5. Phrase recommendations in a friendly coaching tone, starting with 'I suggest'.",
    ]
    return "\n".join(lines)


def build_summary_prompt(
    *,
    day: int,
    total_days: int,
    name: Optional[str],
    goals: Sequence[Goal],
    previous_day_completion_rate: Optional[float],
) -> str:
    lines = [
        f"Create a short, motivational message for {name or 'the user'}'s habit-building journey.",
        "",
        "Context:",
        f"- Day {day} of {total_days}",
        f"- Goals: {', '.join(goal.title for goal in goals)}",
    ]
    if previous_day_completion_rate is not None:
        lines.append(f"- Previous day completion rate: {int(previous_day_completion_rate * 100)}%")
    lines += [
        "",
        "Keep it to 1-2 sentences, focus on momentum, and match the stage of the journey "
        "(beginning, middle or end).",
    ]
    return "\n".join(lines)


def build_weekly_prompt(entries: Sequence[JournalEntry]) -> str:
    blocks = [
        "\n".join(
            [
                f"Date: {_format_day(entry.date)}",
                f"Journal Entry: {entry.content}",
                f"Completed Tasks: {', '.join(entry.completed_tasks)}",
            ]
        )
        for entry in entries
    ]
    joined = "\n\n".join(blocks)
    return (
        "Analyze the following week of journal entries and completed tasks:\n\n"
        f"{joined}\n\n"
        "Provide a concise summary of the week's themes, patterns and emotional state, "
        "and exactly three specific goal suggestions."
    )


def _format_day(value: datetime) -> str:
    return value.strftime("%b %d, %Y")
