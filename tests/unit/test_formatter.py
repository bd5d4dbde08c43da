"""Tests for masto_bridge.mastodon.formatter: notification digest formatting."""

import pytest
from masto_bridge.core.types import NotificationKind, RemoteNotification
from masto_bridge.mastodon.formatter import (
    NO_NOTIFICATIONS_MESSAGE,
    WRAP_WIDTH,
    format_digest,
    format_notification,
    html_to_text,
)


class TestHtmlToText:
    def test_paragraph(self):
        assert html_to_text("<p>Hi</p>") == "Hi"

    def test_none_and_empty(self):
        assert html_to_text(None) == ""
        assert html_to_text("") == ""

    def test_entities_decoded(self):
        assert html_to_text("<p>Fish &amp; chips</p>") == "Fish & chips"

    def test_mention_link_is_plain_text(self):
        html = (
            '<p><span class="h-card" translate="no"><a href="https://ex.social/@bot" '
            'class="u-url mention">@<span>bot</span></a></span> hello</p>'
        )
        assert html_to_text(html) == "@bot hello"

    def test_hashtag_link_is_plain_text(self):
        html = (
            '<p>Check <a href="https://ex.social/tags/python" class="mention hashtag" '
            'rel="tag">#<span>python</span></a> now</p>'
        )
        assert html_to_text(html) == "Check #python now"

    def test_no_markdown_escapes(self):
        assert html_to_text("<p>1. first thing</p>") == "1. first thing"
        assert html_to_text("<p>- not a list</p>") == "- not a list"

    def test_line_break(self):
        assert html_to_text("line one<br />line two") == "line one\nline two"

    def test_paragraphs(self):
        assert html_to_text("<p>one</p><p>two</p>") == "one\n\ntwo"

    def test_wraps_long_lines(self):
        html = "<p>" + " ".join(["word"] * 200) + "</p>"
        lines = html_to_text(html).splitlines()

        assert len(lines) > 1
        assert all(len(line) <= WRAP_WIDTH for line in lines)

    def test_custom_width(self):
        html = "<p>" + " ".join(["word"] * 40) + "</p>"
        lines = html_to_text(html, width=40).splitlines()
        assert all(len(line) <= 40 for line in lines)


class TestFormatNotification:
    def test_mention(self):
        n = RemoteNotification(NotificationKind.MENTION, "alice", "<p>Hi</p>")
        assert format_notification(n) == "mention from alice: Hi"

    def test_without_status(self):
        n = RemoteNotification(NotificationKind.FOLLOW, "bob", None)
        assert format_notification(n) == "follow from bob: "

    @pytest.mark.parametrize("kind", list(NotificationKind))
    def test_kind_label(self, kind):
        n = RemoteNotification(kind, "carol", "<p>x</p>")
        assert format_notification(n).startswith(f"{kind.value} from carol: ")


class TestFormatDigest:
    def test_empty(self):
        assert format_digest([]) == NO_NOTIFICATIONS_MESSAGE == "No new notifications."

    def test_single(self):
        digest = format_digest([RemoteNotification(NotificationKind.MENTION, "alice", "<p>Hi</p>")])
        assert digest == "mention from alice: Hi"

    def test_blank_line_between_entries(self, sample_notifications):
        digest = format_digest(sample_notifications)
        assert digest == "mention from alice: Hi\n\nfollow from bob@other.social: "

    def test_accepts_generators(self, sample_notifications):
        assert format_digest(n for n in sample_notifications).count("\n\n") == 1
