"""Plain-text composition of the three notification emails."""

from __future__ import annotations

import random
from typing import Any

from caretrack.models import AnalysisResult, MedicationSchedule, Patient, Reading, value_to_json
from caretrack.notify.base import EmailMessage

MOTIVATIONAL_MESSAGES = (
    "Remember, taking your medication consistently is a powerful step towards better health. "
    "You're doing great!",
    "Your health journey matters! Taking your meds today brings you closer to your wellness goals.",
    "Every dose you take is an act of self-care. Keep up the amazing work!",
    "Consistency is key! Taking your medication on time builds a foundation for long-term health.",
    "You're not just taking pills, you're taking control of your health. Be proud of that!",
    "Small steps lead to big changes. Remembering your medication is a victory worth celebrating!",
    "Your commitment to your health is inspiring. Keep going strong with your routine!",
    "Think of your medication as your daily health investment. The returns are priceless!",
    "You've got this! Taking your meds is a simple way to show yourself care today.",
    "Every time you take your medication, you're writing a success story for your health.",
)

HEALTH_TIPS = (
    "Tip: Stay hydrated throughout the day to help your body process medications effectively.",
    "Tip: Combine medication time with a daily routine (like brushing teeth) to build consistency.",
    "Tip: Keep a small water bottle by your medications to make taking them easier.",
    "Tip: Regular light exercise can complement your medication's effectiveness.",
    "Tip: Maintain a balanced diet to support your treatment plan.",
    "Tip: Get adequate rest. Sleep helps your body heal and respond better to treatment.",
    "Tip: Don't hesitate to reach out to your healthcare provider with any concerns.",
    "Tip: Track your symptoms daily to monitor your progress effectively.",
    "Tip: Practice deep breathing exercises to manage stress alongside your treatment.",
    "Tip: Celebrate small victories in your health journey. They all matter!",
)

_FOOTER = "This is an automated message from CareTrack."


def encouragement(rng: random.Random | None = None) -> str:
    """One motivational message and one health tip, picked at random."""
    rng = rng or random.Random()
    return f"{rng.choice(MOTIVATIONAL_MESSAGES)}\n\n{rng.choice(HEALTH_TIPS)}"


def _greeting(patient: Patient) -> str:
    return f"Hello {patient.first_name or patient.full_name or 'there'},"


def medication_reminder(
    patient: Patient, medication: MedicationSchedule, rng: random.Random | None = None
) -> EmailMessage:
    lines = [
        _greeting(patient),
        "",
        "This is a friendly reminder to take your medication:",
        "",
        f"  {medication.name}",
        f"  Dosage: {medication.dosage}",
    ]
    if medication.frequency:
        lines.append(f"  Frequency: {medication.frequency}")
    if medication.purpose:
        lines.append(f"  Purpose: {medication.purpose}")
    lines += ["", encouragement(rng), "", "Please take your medication as prescribed.", _FOOTER]
    return EmailMessage(
        to_email=patient.email or "",
        to_name=patient.full_name,
        subject=f"Medication Reminder: Time for {medication.name}",
        body="\n".join(lines),
    )


def motivational_email(
    patient: Patient, context: dict[str, Any], rng: random.Random | None = None
) -> EmailMessage:
    lines = [_greeting(patient), "", encouragement(rng)]
    if "adherence" in context:
        lines += ["", f"Medication adherence (last 7 days): {context['adherence']}%"]
    if context.get("goal_progress"):
        lines.append(f"Average goal progress: {context['goal_progress']}%")
    if context.get("recent_achievements"):
        lines.append(f"Recent achievements: {context['recent_achievements']}")
    lines += [
        "",
        "Keep up the great work! Your consistency is key to managing your health effectively.",
        _FOOTER,
    ]
    return EmailMessage(
        to_email=patient.email or "",
        to_name=patient.full_name,
        subject="Daily Health Motivation & Update",
        body="\n".join(lines),
    )


def health_alert(patient: Patient, reading: Reading, analysis: AnalysisResult) -> EmailMessage:
    measurement = reading.data_type.label.upper()
    level = analysis.risk_level.value.upper()
    value = value_to_json(reading.value)
    if isinstance(value, dict):
        value = f"{value['systolic']:g}/{value['diastolic']:g}"
    else:
        value = f"{value:g}"
    lines = [
        _greeting(patient),
        "",
        f"Important: {level} risk level detected in your recent health data.",
        "",
        f"  Measurement: {measurement}",
        f"  Value: {value} {reading.unit}",
        f"  Risk level: {level}",
        f"  Analysis: {analysis.insights[0] if analysis.insights else 'Unusual reading detected'}",
    ]
    if analysis.recommendations:
        lines += ["", "Recommended actions:"]
        lines += [f"  - {rec.message}. {rec.action}" for rec in analysis.recommendations]
    lines += [
        "",
        "Please consult with your healthcare provider if this reading persists or if you "
        "experience any concerning symptoms.",
        _FOOTER,
    ]
    return EmailMessage(
        to_email=patient.email or "",
        to_name=patient.full_name,
        subject=f"Health Alert: {measurement} - {level}",
        body="\n".join(lines),
    )


def confirmation_email(patient: Patient) -> EmailMessage:
    """Confirms that delivery works end to end for *patient*."""
    lines = [
        _greeting(patient),
        "",
        "This is a test email from CareTrack to confirm that email notifications "
        "are working properly.",
        "",
        "If you are reading this, your email settings are configured correctly "
        "and the scheduler can reach you.",
    ]
    if patient.preferred_email_time:
        lines += [
            "",
            f"Your daily update is scheduled for {patient.preferred_email_time}.",
        ]
    lines += ["", _FOOTER]
    return EmailMessage(
        to_email=patient.email or "",
        to_name=patient.full_name,
        subject="CareTrack Test Email",
        body="\n".join(lines),
    )
