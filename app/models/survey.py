"""
Panel Health — read-only mirror of the panel survey tables.

These tables are owned by the survey platform; this service never writes to
them.  Only the columns the scoring engine reads are mapped.
"""

from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


# users_waves.status values
USER_WAVE_PARTIAL = 0
USER_WAVE_COMPLETED = 1
USER_WAVE_WAVE_SCREENED_OUT = 2
USER_WAVE_PANEL_SCREENED_OUT = 3
USER_WAVE_QUOTA_SCREENED_OUT = 4
# Completion recorded under the secondary complete status
USER_WAVE_COMPLETED_SECONDARY = 6


# waves.status value for a live wave
WAVE_ACTIVE = 1


# users.type value for panel members
PANEL_MEMBER = 1


class Survey(Base):
    __tablename__ = "surveys"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    status: Mapped[str | None] = mapped_column(String, nullable=True)
    type: Mapped[str | None] = mapped_column(
        String, nullable=True, comment="survey type code; lite types excluded from NPS"
    )
    active: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    enable_feedback: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )

    def __repr__(self) -> str:
        return f"<Survey {self.id} type={self.type!r} active={self.active}>"


class SurveyLanguageSetting(Base):
    __tablename__ = "lime_surveys_languagesettings"

    surveyls_survey_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("surveys.id"), primary_key=True
    )
    surveyls_language: Mapped[str] = mapped_column(
        String, primary_key=True, default="en"
    )
    surveyls_title: Mapped[str | None] = mapped_column(String, nullable=True)


class Wave(Base):
    __tablename__ = "waves"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    survey_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("surveys.id"), nullable=False, index=True
    )
    status: Mapped[int] = mapped_column(Integer, nullable=False)


class ProjectWave(Base):
    __tablename__ = "project_waves"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    project_id: Mapped[int] = mapped_column(Integer, nullable=False)
    crm_element_id: Mapped[str | None] = mapped_column(String, nullable=True)


class ProjectWaveWave(Base):
    __tablename__ = "project_waves_waves"

    project_wave_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("project_waves.id"), primary_key=True
    )
    wave_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("waves.id"), primary_key=True
    )


class UserWave(Base):
    __tablename__ = "users_waves"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False, index=True
    )
    wave_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("waves.id"), nullable=False, index=True
    )
    status: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="0 partial / 1 completed / 2 wave, 3 panel, 4 quota screen-out",
    )
    start_date: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True
    )
    completed_date: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True
    )

    def __repr__(self) -> str:
        return f"<UserWave {self.id} wave={self.wave_id} status={self.status}>"


class UserWaveDetail(Base):
    """Respondent feedback; shares its primary key with ``users_waves``."""

    __tablename__ = "users_wave_details"

    id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users_waves.id"), primary_key=True
    )
    feedback_rating: Mapped[int | None] = mapped_column(
        Integer, nullable=True, comment="1-10, 0 when not given"
    )
    feedback_comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    source: Mapped[int | None] = mapped_column(
        Integer, nullable=True, comment="channel the respondent arrived from"
    )


class LimeQuestion(Base):
    __tablename__ = "lime_questions"

    qid: Mapped[int] = mapped_column(Integer, primary_key=True)
    sid: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    gid: Mapped[int] = mapped_column(Integer, nullable=False)
    parent_qid: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class LimeQuestionAttribute(Base):
    __tablename__ = "lime_question_attributes"

    qaid: Mapped[int] = mapped_column(Integer, primary_key=True)
    qid: Mapped[int] = mapped_column(
        Integer, ForeignKey("lime_questions.qid"), nullable=False, index=True
    )
    attribute: Mapped[str] = mapped_column(String, nullable=False)


class PanelUser(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    type: Mapped[int] = mapped_column(Integer, nullable=False)


class SurveyResponse(Base):
    """Raw questionnaire answers keyed by question id; one row per user wave."""

    __tablename__ = "survey_responses"

    id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users_waves.id"), primary_key=True
    )
    responses: Mapped[dict | None] = mapped_column(JSON, nullable=True)
