"""
Meeting registry

Holds every known meeting and its participant roster. After each mutation the
whole collection is written to local storage as one JSON blob; on start-up it
is read back and date fields are parsed again.
"""
import asyncio
import json
import logging
import random
import string
import threading
from datetime import datetime
from typing import AsyncIterator, Callable, Dict, List, Optional

from pydantic import TypeAdapter, ValidationError

import config
from database import utcnow
from schemas import Meeting, MeetingSettings, MeetingSettingsOverride, Participant
from storage import LocalStorage

logger = logging.getLogger(__name__)

MEETINGS_KEY = "meetings"

_meeting_list = TypeAdapter(List[Meeting])


def generate_meeting_code() -> str:
    def part(length):
        return "".join(random.choices(string.ascii_lowercase, k=length))

    return f"{part(3)}-{part(4)}-{part(3)}"


class MeetingRegistry:
    def __init__(self, storage: LocalStorage, clock: Callable[[], datetime] = utcnow):
        self.storage = storage
        self.clock = clock
        self.meetings: List[Meeting] = []
        # request handlers may run on several threads
        self._lock = threading.RLock()
        self.load()

    # --------------------- Persistence ---------------------

    def load(self) -> None:
        raw = self.storage.get_item(MEETINGS_KEY)
        if raw is None:
            self.meetings = []
            return
        try:
            entries = json.loads(raw)
            if not isinstance(entries, list):
                raise ValueError("stored meetings are not a list")
        except ValueError as e:
            logger.error("Error parsing stored meetings, resetting: %s", e)
            self.meetings = []
            self.storage.remove_item(MEETINGS_KEY)
            return

        meetings = []
        for entry in entries:
            try:
                meeting = Meeting.model_validate(entry)
            except ValidationError:
                logger.warning("Dropping malformed meeting record")
                continue
            if not (meeting.id and meeting.host_id and meeting.host_name and meeting.participants):
                logger.warning("Dropping incomplete meeting %s", meeting.id)
                continue
            meetings.append(meeting)
        self.meetings = meetings
        # write back without the dropped entries
        self.save()

    def save(self) -> None:
        with self._lock:
            blob = _meeting_list.dump_json(self.meetings, by_alias=True).decode("utf-8")
            self.storage.set_item(MEETINGS_KEY, blob)
        logger.debug("Saved %d meetings", len(self.meetings))

    # --------------------- Operations ---------------------

    def _new_code(self) -> str:
        taken = {m.id for m in self.meetings}
        for _ in range(10):
            code = generate_meeting_code()
            if code not in taken:
                return code
        raise RuntimeError("Failed to generate unique meeting code")

    def create(self, host_id: str, host_name: str, settings: Optional[Dict[str, bool]] = None) -> Meeting:
        now = self.clock()
        merged = MeetingSettings().model_dump()
        if settings:
            merged.update(MeetingSettingsOverride.model_validate(settings).model_dump(exclude_none=True))
        host = Participant(
            id=host_id,
            name=host_name,
            is_host=True,
            is_muted=False,
            is_video_on=False,
            join_time=now,
        )
        with self._lock:
            meeting = Meeting(
                id=self._new_code(),
                host_id=host_id,
                host_name=host_name,
                start_time=now,
                participants=[host],
                is_active=True,
                settings=MeetingSettings.model_validate(merged),
            )
            self.meetings.append(meeting)
            try:
                self.save()
            except Exception:
                self.meetings.remove(meeting)
                raise
        logger.info("Created meeting %s for host %s", meeting.id, host_id)
        return meeting

    def get(self, meeting_id: str) -> Optional[Meeting]:
        for meeting in self.meetings:
            if meeting.id == meeting_id:
                return meeting
        return None

    def join(self, meeting_id: str, participant_id: str, participant_name: str) -> Optional[Meeting]:
        with self._lock:
            meeting = self.get(meeting_id)
            if not meeting or not meeting.is_active:
                return None

            existing = meeting.find_participant(participant_id)
            if existing:
                existing.join_time = self.clock()
            else:
                meeting.participants.append(
                    Participant(
                        id=participant_id,
                        name=participant_name,
                        is_host=False,
                        is_muted=meeting.settings.mute_participants_on_entry,
                        is_video_on=False,
                        join_time=self.clock(),
                    )
                )
                logger.info("Participant %s joined meeting %s", participant_id, meeting_id)
            self.save()
            return meeting

    def leave(self, meeting_id: str, participant_id: str) -> bool:
        with self._lock:
            meeting = self.get(meeting_id)
            if not meeting:
                return False

            participant = meeting.find_participant(participant_id)
            if participant and participant.is_host:
                # no host transfer: the meeting ends for everyone
                return self.end(meeting_id)

            meeting.participants = [p for p in meeting.participants if p.id != participant_id]
            self.save()
            return True

    def end(self, meeting_id: str) -> bool:
        with self._lock:
            meeting = self.get(meeting_id)
            if not meeting:
                return False
            meeting.is_active = False
            self.save()
        logger.info("Meeting %s ended", meeting_id)
        return True

    def _toggle(self, meeting_id: str, participant_id: str, attr: str) -> bool:
        with self._lock:
            meeting = self.get(meeting_id)
            if not meeting:
                return False
            participant = meeting.find_participant(participant_id)
            if not participant:
                return False
            setattr(participant, attr, not getattr(participant, attr))
            self.save()
            return True

    def toggle_mute(self, meeting_id: str, participant_id: str) -> bool:
        return self._toggle(meeting_id, participant_id, "is_muted")

    def toggle_video(self, meeting_id: str, participant_id: str) -> bool:
        return self._toggle(meeting_id, participant_id, "is_video_on")

    def list_active(self) -> List[Meeting]:
        return [m for m in self.meetings if m.is_active]

    def list_by_host(self, host_id: str) -> List[Meeting]:
        return [m for m in self.meetings if m.host_id == host_id]

    async def watch(
        self,
        meeting_id: str,
        interval: float = config.MEETING_POLL_INTERVAL,
        sleep=asyncio.sleep,
        max_polls: Optional[int] = None,
    ) -> AsyncIterator[Meeting]:
        """Poll a meeting, yielding it while active.

        A missing meeting is skipped and polled again; the loop ends once the
        meeting is inactive.
        """
        polls = 0
        while max_polls is None or polls < max_polls:
            polls += 1
            meeting = self.get(meeting_id)
            if meeting is not None:
                if not meeting.is_active:
                    logger.info("Meeting %s is no longer active, stopping poll", meeting_id)
                    return
                yield meeting
            await sleep(interval)
