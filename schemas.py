"""Pydantic schemas for requests.

Only request bodies are modelled; responses are the ``ServiceResult``
envelope built by the service layer.
"""
from typing import List, Optional

from pydantic import BaseModel, Field

from services import Participant


class JoinRequest(BaseModel):
    phoneNumber: str = Field(min_length=10, max_length=15)
    fullName: str = Field(min_length=1)
    userId: Optional[str] = None

    def to_participant(self) -> Participant:
        return Participant(self.fullName, self.phoneNumber, self.userId)


class JoinManyRequest(BaseModel):
    users: List[JoinRequest] = Field(min_length=1, max_length=100)
