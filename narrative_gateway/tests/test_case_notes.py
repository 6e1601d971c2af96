"""Tests for case note decoding and the CaseBundle model."""
import json
from datetime import datetime

from fakes import SAMPLE_YOUTH, report_payload

from narrative_gateway.case_notes import (
    CaseBundle,
    EndpointKind,
    PlainNote,
    StructuredNote,
    YouthProfile,
    decode_note,
    parse_note_date,
)


class TestDecodeNote:
    """Every historical encoding decodes to one of two note shapes."""

    def test_structured_sections(self):
        record = {
            "note": json.dumps({"sections": {"school": "Finished homework.", "peers": "Helped a peer."}}),
            "date": "2024-03-04",
        }
        note = decode_note(record)
        assert isinstance(note, StructuredNote)
        assert note.sections == {"school": "Finished homework.", "peers": "Helped a peer."}
        assert note.text == "Finished homework. Helped a peer."
        assert note.date == "2024-03-04"

    def test_blank_and_non_text_sections_dropped(self):
        record = {"note": json.dumps({"sections": {"a": "Kept.", "b": "  ", "c": 3}})}
        assert decode_note(record).sections == {"a": "Kept."}

    def test_legacy_summary_json(self):
        note = decode_note({"note": '{"summary": "Calm evening in the unit."}'})
        assert isinstance(note, PlainNote)
        assert note.text == "Calm evening in the unit."

    def test_raw_text(self):
        note = decode_note({"content": "Argued with staff at dinner."})
        assert isinstance(note, PlainNote)
        assert note.text == "Argued with staff at dinner."

    def test_bare_string(self):
        assert decode_note("Attended therapy.").text == "Attended therapy."

    def test_invalid_json_kept_as_text(self):
        assert decode_note({"note": "{not json"}).text == "{not json"

    def test_record_summary_prepended(self):
        record = {
            "summary": "Good week.",
            "note": json.dumps({"sections": {"school": "Turned in homework."}}),
        }
        assert decode_note(record).text == "Good week. Turned in homework."

    def test_summary_only_record(self):
        note = decode_note({"summary": "Brief check-in."})
        assert note.text == "Brief check-in."

    def test_dict_payload(self):
        note = decode_note({"note": {"sections": {"x": "Parsed already."}}})
        assert isinstance(note, StructuredNote)

    def test_empty_records(self):
        assert decode_note({}) is None
        assert decode_note({"note": "   "}) is None
        assert decode_note(None) is None
        assert decode_note(42) is None


class TestYouthProfile:

    def test_from_dict(self):
        youth = YouthProfile.from_dict(SAMPLE_YOUTH)
        assert youth.first_name == "Jordan"
        assert youth.full_name == "Jordan Reyes"
        assert youth.level == "2"
        assert youth.diagnoses == "ADHD, PTSD"

    def test_missing_name(self):
        youth = YouthProfile.from_dict({})
        assert youth.display_name == "The youth"
        assert youth.full_name == "the youth"

    def test_non_dict(self):
        assert YouthProfile.from_dict(None).first_name == ""


class TestCaseBundle:

    def test_from_summarize_report(self):
        payload = report_payload(
            progressNotes=[{"note": "Calm day.", "date": "2024-03-01"}],
            behaviorPoints=[{"totalPoints": 12}, {"points": "14"}, {"totalPoints": "n/a"}],
            dailyRatings=[{"peer": 3}],
        )
        bundle = CaseBundle.from_request(EndpointKind.SUMMARIZE_REPORT, payload)

        assert bundle.youth.first_name == "Jordan"
        assert bundle.report_type == "progress"
        assert [n.text for n in bundle.notes] == ["Calm day."]
        assert bundle.behavior_points == [12.0, 14.0]
        assert bundle.daily_ratings == [{"peer": 3}]

    def test_case_notes_alias(self):
        bundle = CaseBundle.from_request("summarize-report", report_payload(caseNotes=["Note A"]))
        assert bundle.note_text == "Note A"

    def test_youth_dict_converted(self):
        bundle = CaseBundle(youth={"firstName": "Ava"})
        assert isinstance(bundle.youth, YouthProfile)
        assert bundle.youth.display_name == "Ava"

    def test_undecodable_notes_skipped(self):
        bundle = CaseBundle(note_records=["Kept", {}, None, "  "])
        assert len(bundle.notes) == 1

    def test_recent_notes_newest_first(self):
        bundle = CaseBundle(note_records=[
            {"note": "first", "date": "2024-03-01"},
            {"note": "third", "date": "2024-03-03"},
            {"note": "second", "date": "2024-03-02"},
            {"note": "fourth", "date": "2024-03-04"},
        ])
        assert [n.text for n in bundle.recent_notes(3)] == ["fourth", "third", "second"]

    def test_undated_later_entries_are_newer(self):
        bundle = CaseBundle(note_records=["older", "newer"])
        assert [n.text for n in bundle.recent_notes()] == ["newer", "older"]

    def test_summarize_note_request(self):
        bundle = CaseBundle.from_request("summarize-note", {"noteContent": "A short note.", "maxLength": 20})
        assert bundle.note_text == "A short note."
        assert bundle.max_length == 20

    def test_enhance_request(self):
        bundle = CaseBundle.from_request("enhance-report", {"reportContent": "Draft", "youth": SAMPLE_YOUTH})
        assert bundle.report_content == "Draft"
        assert bundle.notes == []

    def test_request_body_round_trip(self):
        payload = report_payload(progressNotes=["Calm day."], behaviorPoints=[12, 13], dailyRatings=[])
        bundle = CaseBundle.from_request("summarize-report", payload)
        again = CaseBundle.from_request("summarize-report", bundle.to_request_body("summarize-report"))

        assert again.note_text == bundle.note_text
        assert again.behavior_points == bundle.behavior_points
        assert again.youth == bundle.youth

    def test_lone_string_notes_kept_whole(self):
        bundle = CaseBundle.from_request("summarize-report", report_payload(progressNotes="Jordan argued with staff."))
        assert [n.text for n in bundle.notes] == ["Jordan argued with staff."]

    def test_scalar_behavior_points(self):
        bundle = CaseBundle.from_request("summarize-report", report_payload(behaviorPoints=12, dailyRatings={"peer": 4}))
        assert bundle.behavior_points == [12.0]
        assert bundle.daily_ratings == [{"peer": 4}]

    def test_non_dict_data_ignored(self):
        payload = dict(report_payload(), data="not a dict")
        assert CaseBundle.from_request("summarize-report", payload).notes == []

    def test_mixed_date_formats_ordered(self):
        bundle = CaseBundle(note_records=[
            {"note": "march ninth", "date": "3/9/2024"},
            {"note": "undated"},
            {"note": "march tenth", "date": "2024-03-10"},
            {"note": "march eighth", "date": "2024-03-08T09:30:00Z"},
        ])
        assert [n.text for n in bundle.recent_notes(4)] == ["march tenth", "march ninth", "march eighth", "undated"]


class TestParseNoteDate:

    def test_formats(self):
        assert parse_note_date("2024-03-10") == datetime(2024, 3, 10)
        assert parse_note_date("03/09/24") == datetime(2024, 3, 9)
        assert parse_note_date("2024-03-10T12:00:00+02:00") == datetime(2024, 3, 10, 10, 0)

    def test_unparseable(self):
        assert parse_note_date("next week") is None
        assert parse_note_date("") is None


class TestOtherRequestKinds:

    def test_categorize_incident(self):
        bundle = CaseBundle.from_request(EndpointKind.CATEGORIZE_INCIDENT, {"description": " Fight in the gym. "})
        assert bundle.incident_text == "Fight in the gym."

    def test_analyze_incident_string_data(self):
        body = {"incidentData": "Threw a chair.", "historicalIncidents": {"category": "property damage"}}
        bundle = CaseBundle.from_request(EndpointKind.ANALYZE_INCIDENT, body)
        assert bundle.incident_text == "Threw a chair."
        assert bundle.incident_history == [{"category": "property damage"}]

    def test_analyze_behavior(self):
        bundle = CaseBundle.from_request(EndpointKind.ANALYZE_BEHAVIOR, {"behaviorData": [{"totalPoints": 9}, 11]})
        assert bundle.behavior_points == [9.0, 11.0]

    def test_query_youth_from_context(self):
        body = {"question": "How is Jordan doing?", "context": {"youth": SAMPLE_YOUTH, "fieldType": "narrative"}}
        bundle = CaseBundle.from_request(EndpointKind.QUERY, body)

        assert bundle.youth.first_name == "Jordan"
        assert bundle.is_text_expansion is True

    def test_plain_query_is_not_expansion(self):
        bundle = CaseBundle.from_request(EndpointKind.QUERY, {"question": "Who improved?", "context": None})
        assert bundle.is_text_expansion is False
        assert bundle.context == {}

    def test_treatment_progress_dict(self):
        body = {
            "youth": SAMPLE_YOUTH,
            "progressData": {"behaviorPoints": [10, 12], "progressNotes": ["Calm week."]},
            "assessmentData": {"risk": "moderate"},
        }
        bundle = CaseBundle.from_request(EndpointKind.TREATMENT_RECOMMENDATIONS, body)

        assert bundle.behavior_points == [10.0, 12.0]
        assert bundle.note_text == "Calm week."
        assert bundle.assessment_data == {"risk": "moderate"}

    def test_treatment_progress_list(self):
        body = {"youth": SAMPLE_YOUTH, "progressData": [9, 11]}
        bundle = CaseBundle.from_request(EndpointKind.TREATMENT_RECOMMENDATIONS, body)
        assert bundle.behavior_points == [9.0, 11.0]

    def test_request_bodies_round_trip(self):
        for kind, body in [
            (EndpointKind.CATEGORIZE_INCIDENT, {"description": "Fight in the gym."}),
            (EndpointKind.QUERY, {"question": "Who improved?", "context": {"unit": "B"}}),
            (EndpointKind.TREATMENT_RECOMMENDATIONS, {"youth": SAMPLE_YOUTH, "progressData": [9, 11]}),
        ]:
            bundle = CaseBundle.from_request(kind, body)
            again = CaseBundle.from_request(kind, bundle.to_request_body(kind))
            assert again == bundle
