"""Serializers for a plan's visiting schedule."""

from __future__ import annotations

import csv
import io

from ...models.domain import Plan

FIELDNAMES = [
    "plan_id",
    "planned_date",
    "sequence_number",
    "job_id",
    "arrival_time",
    "departure_time",
    "duration_at_location_minutes",
    "travel_time_to_next_minutes",
    "distance_to_next_km",
    "latitude",
    "longitude",
]


def schedule_rows(plan: Plan) -> list[dict]:
    if plan.route_output is None:
        return []
    return [
        {
            "plan_id": plan.id,
            "planned_date": plan.planned_date.isoformat(),
            "sequence_number": waypoint.sequence_number,
            "job_id": waypoint.job_id,
            "arrival_time": waypoint.arrival_time.isoformat(),
            "departure_time": waypoint.departure_time.isoformat(),
            "duration_at_location_minutes": waypoint.duration_at_location_minutes,
            "travel_time_to_next_minutes": waypoint.travel_time_to_next_minutes,
            "distance_to_next_km": round(waypoint.distance_to_next_km, 3),
            "latitude": waypoint.coordinates.latitude,
            "longitude": waypoint.coordinates.longitude,
        }
        for waypoint in plan.route_output.waypoints
    ]


def schedule_to_json(plan: Plan) -> dict:
    route = plan.route_output
    return {
        "plan_id": plan.id,
        "user_id": plan.user_id,
        "planned_date": plan.planned_date.isoformat(),
        "status": plan.status.value,
        "total_distance_km": route.total_distance_km if route else 0.0,
        "total_travel_time_minutes": route.total_travel_time_minutes if route else 0,
        "total_work_time_minutes": route.total_work_time_minutes if route else 0,
        "stops": schedule_rows(plan),
    }


def schedule_to_csv(plan: Plan) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=FIELDNAMES)
    writer.writeheader()
    for row in schedule_rows(plan):
        writer.writerow(row)
    return buffer.getvalue()
