"""
Panel Health — ORM model registry.

Importing every model here ensures that any tool inspecting
``Base.metadata`` discovers all mapped tables.
"""

from app.models.survey import (
    LimeQuestion,
    LimeQuestionAttribute,
    PanelUser,
    ProjectWave,
    ProjectWaveWave,
    Survey,
    SurveyLanguageSetting,
    SurveyResponse,
    UserWave,
    UserWaveDetail,
    Wave,
)

__all__ = [
    "Survey",
    "SurveyLanguageSetting",
    "Wave",
    "ProjectWave",
    "ProjectWaveWave",
    "UserWave",
    "UserWaveDetail",
    "LimeQuestion",
    "LimeQuestionAttribute",
    "PanelUser",
    "SurveyResponse",
]
