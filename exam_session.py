"""Timed test-session flow: Listening, then Reading, then submission.

``ExamSession`` is the state machine behind the test page. The browser
runner (static/js/test_runner.js) follows the same transitions; the server
uses ``ExamSession.plan()`` to hand it the starting phase and budgets.

Only the active phase's clock runs. A phase ends either when its clock hits
zero or when the learner presses the proceed/submit button, and both paths
go through ``complete_phase`` so a phase completes exactly once. Submission
is guarded by an in-flight flag so it is attempted at most once at a time.
"""

import logging
import math

logger = logging.getLogger(__name__)

LISTENING = 'listening'
READING = 'reading'
SUBMITTED = 'submitted'
EMPTY = 'empty'

DEFAULT_LISTENING_MINUTES = 30
DEFAULT_READING_MINUTES = 60

SEEK_TOLERANCE_SECONDS = 0.4


class SubmissionFailed(Exception):
    """Raised by a submit callback when the answers could not be delivered."""


def resolve_minutes(value, fallback):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return fallback
    if not math.isfinite(value) or value <= 0:
        return fallback
    return value


def format_duration(seconds):
    if not isinstance(seconds, (int, float)) or not math.isfinite(seconds) or seconds <= 0:
        return '00:00'
    minutes, secs = divmod(int(seconds), 60)
    return f'{minutes:02d}:{secs:02d}'


class ExamSession:

    def __init__(self, has_listening, has_reading, listening_seconds, reading_seconds, submit=None):
        self.has_listening = has_listening
        self.has_reading = has_reading
        self.submit_callback = submit
        self.time_left = {LISTENING: listening_seconds, READING: reading_seconds}
        self.completed = {LISTENING: not has_listening, READING: not has_reading}
        self.answers = {}
        self.submitting = False
        self.result = None
        self.error = None

        if has_listening:
            self.phase = LISTENING
        elif has_reading:
            self.phase = READING
        else:
            self.phase = EMPTY

    @classmethod
    def from_definition(cls, definition, submit=None):
        timing = definition.timing
        listening_minutes = resolve_minutes(
            timing.listening_total_minutes if timing else None, DEFAULT_LISTENING_MINUTES)
        reading_minutes = resolve_minutes(
            timing.reading_total_minutes if timing else None, DEFAULT_READING_MINUTES)
        return cls(
            has_listening=bool(definition.listening_sections),
            has_reading=bool(definition.reading_sections),
            listening_seconds=int(listening_minutes * 60),
            reading_seconds=int(reading_minutes * 60),
            submit=submit,
        )

    @property
    def is_empty(self):
        return self.phase == EMPTY

    @property
    def is_submitted(self):
        return self.phase == SUBMITTED

    @property
    def action_label(self):
        if self.phase == LISTENING and self.has_reading:
            return 'Proceed to reading'
        return 'Submit test'

    def set_answer(self, q_id, value):
        if self.phase in (LISTENING, READING):
            self.answers[q_id] = value

    def tick(self):
        """Advance the active phase clock by one second."""
        phase = self.phase
        if phase not in (LISTENING, READING) or self.completed[phase] or self.submitting:
            return
        self.time_left[phase] = max(0, self.time_left[phase] - 1)
        if self.time_left[phase] == 0:
            self.complete_phase(phase)

    def complete_phase(self, phase):
        """End ``phase`` by timer expiry or by the proceed/submit button.

        Returns True when the call moved the session forward.
        """
        if phase != self.phase or phase not in (LISTENING, READING):
            return False

        if phase == LISTENING and self.has_reading:
            if self.completed[LISTENING]:
                return False
            self.completed[LISTENING] = True
            self.phase = READING
            logger.debug("Listening complete, moving to reading")
            return True

        # last phase of the test; a failed submission can be retried from here
        self.completed[phase] = True
        self.completed[READING] = True
        return self.submit()

    def submit(self):
        if self.submitting or self.phase in (SUBMITTED, EMPTY):
            return False
        self.submitting = True
        self.error = None
        try:
            self.result = self.submit_callback(dict(self.answers)) if self.submit_callback else None
        except SubmissionFailed as e:
            self.error = str(e) or 'Unable to submit answers right now.'
            logger.warning("Submission failed: %s", self.error)
            return False
        finally:
            self.submitting = False

        self.completed[LISTENING] = True
        self.completed[READING] = True
        self.phase = SUBMITTED
        return True

    def plan(self, audio_controls=None):
        """Starting state handed to the browser runner."""
        return {
            'initial_phase': self.phase,
            'has_listening': self.has_listening,
            'has_reading': self.has_reading,
            'listening_seconds': self.time_left[LISTENING],
            'reading_seconds': self.time_left[READING],
            'allow_seek': audio_controls.allow_seek if audio_controls else True,
            'show_remaining': audio_controls.show_remaining if audio_controls else False,
            'seek_tolerance': SEEK_TOLERANCE_SECONDS,
        }


class AudioGuard:
    """Listen-once rules for the listening recording.

    With seeking disallowed the native controls are hidden, playback starts
    only from an explicit button, seeks are snapped back to the last played
    position and an unexpected pause resumes playback until the end.
    """

    def __init__(self, allow_seek=True, tolerance=SEEK_TOLERANCE_SECONDS):
        self.locked = allow_seek is False
        self.tolerance = tolerance
        self.last_position = 0.0
        self.started = False
        self.ended = False

    @property
    def show_native_controls(self):
        return not self.locked

    @property
    def can_start(self):
        return not self.started

    @property
    def control_label(self):
        if not self.started:
            return 'Play recording'
        return 'Playback finished' if self.ended else 'Playing…'

    def on_time_update(self, position):
        self.last_position = position

    def on_seeking(self, position):
        """Return the position to snap back to, or None to let the seek stand."""
        if not self.locked:
            return None
        if abs(position - self.last_position) > self.tolerance:
            return self.last_position
        return None

    def on_play(self):
        self.started = True
        self.ended = False

    def on_pause(self):
        """Return True when playback must be resumed."""
        return self.locked and self.started and not self.ended

    def on_ended(self):
        self.ended = True
