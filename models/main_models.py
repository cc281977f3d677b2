"""
Module containing data models used across the project.
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

Role = Literal["user", "admin"]
ROLES = ("user", "admin")


# =====================
# Stored records
# =====================

class UserRecord(BaseModel):
    """
    A user as stored in the users table.
    """
    id: str
    username: str
    password_hash: str
    role: Role = "user"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def public(self) -> Dict[str, Any]:
        """Serializable view without the password hash."""
        return {
            "id": self.id,
            "username": self.username,
            "role": self.role,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


class QuestionnaireAnswers(BaseModel):
    """
    Answers embedded on a company. Values carry no schema.
    """
    answers: Dict[str, Any] = Field(default_factory=dict)


class CompanyRecord(BaseModel):
    """
    A company as stored in the companies table.
    """
    id: str
    name: str
    created_by: str = Field(..., description="Username of the creator")
    data: Dict[str, Any] = Field(default_factory=dict, description="Uploaded dashboard data")
    created_at: Optional[datetime] = None
    questionnaire: Optional[QuestionnaireAnswers] = None

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "createdBy": self.created_by,
            "createdAt": self.created_at,
        }

    def detail(self) -> Dict[str, Any]:
        out = self.summary()
        out["data"] = self.data
        return out

    @property
    def answers(self) -> Dict[str, Any]:
        return self.questionnaire.answers if self.questionnaire else {}


# =====================
# Request bodies
# =====================
# Fields are optional so handlers can answer with the specific 400 message.

class LoginRequest(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None


class UserCreateRequest(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None
    role: Optional[str] = None


class UserUpdateRequest(BaseModel):
    userId: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    role: Optional[str] = None


class UserDeleteRequest(BaseModel):
    userId: Optional[str] = None


class CompanyRequest(BaseModel):
    name: Optional[Any] = None


class QuestionnaireSubmission(BaseModel):
    answers: Optional[Any] = None


# =====================
# Questionnaire catalogue
# =====================

class QuestionOption(BaseModel):
    value: str
    label: str


class Question(BaseModel):
    """
    A fixed supply-chain maturity question scored 1 (weakest) to 4.
    """
    id: str
    text: str
    options: List[QuestionOption]


def _question(qid: str, text: str, labels: List[str]) -> Question:
    return Question(
        id=qid,
        text=text,
        options=[QuestionOption(value=str(i), label=label) for i, label in enumerate(labels, 1)],
    )


QUESTIONS: List[Question] = [
    _question("q1", "How would you rate your current supply chain visibility?", [
        "Poor - Limited visibility across the supply chain",
        "Fair - Some visibility but significant gaps exist",
        "Good - Visibility across most of the supply chain",
        "Excellent - Complete end-to-end visibility",
    ]),
    _question("q2", "What level of automation exists in your procurement processes?", [
        "Minimal - Mostly manual processes",
        "Basic - Some automation of routine tasks",
        "Advanced - Significant automation with some manual oversight",
        "Comprehensive - Fully automated with minimal manual intervention",
    ]),
    _question("q3", "How effectively do you manage inventory levels?", [
        "Ineffective - Frequent stockouts or excess inventory",
        "Somewhat effective - Occasional issues with inventory levels",
        "Effective - Rare inventory issues",
        "Highly effective - Optimal inventory levels consistently maintained",
    ]),
    _question("q4", "How would you describe your supplier relationship management?", [
        "Transactional - Limited communication with suppliers",
        "Developing - Regular communication but limited collaboration",
        "Collaborative - Active partnership with key suppliers",
        "Strategic - Deep integration and shared objectives with suppliers",
    ]),
    _question("q5", "How resilient is your supply chain to disruptions?", [
        "Vulnerable - Major disruptions cause significant issues",
        "Somewhat resilient - Can handle minor disruptions",
        "Resilient - Well-prepared for most disruptions",
        "Highly resilient - Robust contingency plans for all scenarios",
    ]),
]
