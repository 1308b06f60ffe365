from __future__ import annotations

from datetime import datetime, timedelta

from .models import Appointment, Client, DocumentFile, Note, PracticeSnapshot
from .time_utils import to_iso, utc_now


def starter_clients(now: datetime | None = None) -> list[Client]:
    now = now or utc_now()
    return [
        Client(
            id="c1",
            name="Sarah Jenkins",
            avatar="https://picsum.photos/200/200?random=1",
            status="Active",
            diagnosis="Generalized Anxiety Disorder",
            next_appointment=to_iso(now + timedelta(days=1)),
            documents=[
                DocumentFile(id="d1", name="Intake_Form.pdf", type="application/pdf", upload_date="2023-10-01"),
                DocumentFile(
                    id="d2",
                    name="Anxiety_Worksheet_v2.docx",
                    type="application/vnd.openxmlformats-officedocument.wordprocessingml.document",
                    upload_date="2023-11-15",
                ),
            ],
            notes=[
                Note(
                    id="n1",
                    date=to_iso(now - timedelta(days=7)),
                    content=(
                        "Patient reported increased stress at work due to restructuring. Sleep has been disrupted, "
                        "waking up at 3 AM unable to fall back asleep. We discussed grounding techniques and she "
                        "agreed to try the '5-4-3-2-1' method daily. Expressed concern about upcoming family gathering."
                    ),
                    sentiment="Concern",
                    summary="Work stress causing insomnia. Introduced grounding techniques. Anxiety regarding family events.",
                ),
                Note(
                    id="n2",
                    date=to_iso(now - timedelta(days=14)),
                    content=(
                        "Initial session. Established rapport. Patient describes a history of 'worrying about "
                        "everything'. No current medication. Goals: Reduce daily anxiety levels, improve sleep quality."
                    ),
                    sentiment="Neutral",
                ),
            ],
        ),
        Client(
            id="c2",
            name="Michael Chen",
            avatar="https://picsum.photos/200/200?random=2",
            status="Active",
            diagnosis="Mild Depression",
            next_appointment=to_iso(now + timedelta(days=2)),
            notes=[
                Note(
                    id="n3",
                    date=to_iso(now - timedelta(days=5)),
                    content=(
                        "Michael is feeling slightly better. Started gym 2x a week. Still struggling with motivation "
                        "for work tasks. Discussed behavioral activation strategies."
                    ),
                    sentiment="Positive",
                )
            ],
        ),
        Client(
            id="c3",
            name="Elena Rodriguez",
            avatar="https://picsum.photos/200/200?random=3",
            status="Archived",
            diagnosis="Adjustment Disorder",
        ),
    ]


def starter_appointments(now: datetime | None = None) -> list[Appointment]:
    now = now or utc_now()
    return [
        Appointment(id="a1", client_id="c1", date=to_iso(now + timedelta(days=1)), duration_minutes=50, type="In-Person"),
        Appointment(id="a2", client_id="c2", date=to_iso(now + timedelta(days=2)), duration_minutes=50, type="Virtual"),
    ]


def starter_snapshot(now: datetime | None = None) -> PracticeSnapshot:
    now = now or utc_now()
    return PracticeSnapshot(clients=starter_clients(now), appointments=starter_appointments(now))
