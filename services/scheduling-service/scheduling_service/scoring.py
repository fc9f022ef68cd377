from datetime import date, datetime

from .schemas import EngineerSettings, Recommendation


def calculate_engineer_score(
    distance: float,
    travel_time: int,
    available_date: date,
    now: datetime,
    daily_workload: int = 0,
) -> int:
    """
    Display score in [0, 100]. Ranking itself uses ranking_key; the score is
    only the final tiebreak.
    """
    score = 100.0
    score -= min(distance * 2, 50)
    score -= min(travel_time * 0.5, 30)

    days_out = max(0, (available_date - now.date()).days)
    score += max(20 - days_out, 0)

    if daily_workload == 0:
        score += 8

    return max(0, min(100, int(round(score))))


def ranking_key(rec: Recommendation):
    # earlier date, shorter travel, lighter day, closer, then higher score
    return (
        rec.available_date,
        rec.travel_time,
        rec.daily_workload_that_day,
        rec.distance,
        -rec.score,
    )


def format_date(day: date) -> str:
    return day.strftime("%d/%m/%Y")


def generate_recommendation_reasons(
    engineer: EngineerSettings,
    distance: float,
    travel_time: int,
    available_date: date,
    daily_workload: int = 0,
    service_area_match: bool = True,
) -> list[str]:
    reasons = [f"First available: {format_date(available_date)}"]

    if daily_workload == 0:
        reasons.append("0 jobs on that day")
    else:
        reasons.append(f"{daily_workload} job{'' if daily_workload == 1 else 's'} on that day")

    if distance <= 10 and travel_time <= 30:
        reasons.append(f"Very close ({distance:.1f}mi, {travel_time}min)")
    elif distance <= 25 and travel_time <= 60:
        reasons.append(f"Reasonable distance ({distance:.1f}mi, {travel_time}min)")
    else:
        reasons.append(f"{distance:.1f}mi away, {travel_time}min travel")

    if not service_area_match:
        reasons.append("Outside declared service areas (allowed by settings)")

    if len(engineer.service_areas) > 1:
        reasons.append("Covers multiple service areas")

    return reasons
