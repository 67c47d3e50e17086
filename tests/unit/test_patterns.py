import base64
import codecs

import pytest

from contactcrawl.pipeline.patterns import (
    decode_cfemail,
    decode_encoded_attribute,
    extract_emails,
    extract_obfuscated_emails,
    extract_phone_numbers,
    find_name_near,
    find_phone_near,
    find_title_near,
    is_contact_email,
    is_plausible_phone,
    is_strict_regional_phone,
)


def cf_encode(email: str, key: int = 0x42) -> str:
    return f"{key:02x}" + "".join(f"{ord(c) ^ key:02x}" for c in email)


class TestExtractEmails:
    def test_plain_email_found(self):
        assert extract_emails("<p>Contact coach@example.org</p>") == ["coach@example.org"]

    def test_image_asset_filename_rejected(self):
        assert extract_emails('<img src="avatar@2x.png">') == []

    def test_lowercased_and_deduplicated(self):
        html = "<p>Info@Rink.com</p><footer>info@rink.com</footer>"
        assert extract_emails(html) == ["info@rink.com"]

    def test_first_seen_order(self):
        html = "<p>b@club.org</p><p>a@club.org</p>"
        assert extract_emails(html) == ["b@club.org", "a@club.org"]

    def test_tracking_and_noreply_domains_rejected(self):
        html = (
            "<p>abc@sentry.io</p>"
            "<p>x@o123.ingest.sentry.io</p>"
            "<p>noreply@club.org</p>"
            "<p>5f2b3c4d5e6f7a8b9c0d1e2f@tracker.club.org</p>"
            "<p>coach@club.org</p>"
        )
        assert extract_emails(html) == ["coach@club.org"]

    def test_asset_with_version_in_url_rejected(self):
        html = '<link href="https://cdn.net/npm/bootstrap@5.3.0.min.css"><p>coach@rink.org</p>'
        assert extract_emails(html) == ["coach@rink.org"]

    def test_script_author_email_rejected(self):
        html = (
            "<script>/** @author Some Dev <dev@somelib.dev> */ var x = 1;</script>"
            "<p>Email coach@rink.org</p>"
        )
        assert extract_emails(html) == ["coach@rink.org"]

    def test_form_placeholder_rejected(self):
        html = '<input type="email" placeholder="jane.smith@myrink.org"><p>coach@rink.org</p>'
        assert extract_emails(html) == ["coach@rink.org"]

    def test_encoded_space_prefix_removed(self):
        html = '<a href="mailto:%20jane@club.org">Mail</a>'
        assert extract_emails(html) == ["jane@club.org"]

    def test_empty_input(self):
        assert extract_emails("") == []


class TestIsContactEmail:
    @pytest.mark.parametrize("email", [
        "logo@2x.png",
        "package@1.2.3.beta",
        "feross@feross.org",
        "you@club.org",
        "no-reply@club.org",
        "widget@static.wixpress.com",
    ])
    def test_rejected(self, email):
        assert is_contact_email(email) is False

    @pytest.mark.parametrize("email", [
        "jane.doe@skatingclub.org",
        "info@rink.com",
        "coach@example.org",
    ])
    def test_accepted(self, email):
        assert is_contact_email(email) is True


class TestObfuscatedEmails:
    def test_cloudflare_data_attribute(self):
        html = f'<span class="__cf_email__" data-cfemail="{cf_encode("info@rink.com")}">[email&#160;protected]</span>'
        assert extract_obfuscated_emails(html) == ["info@rink.com"]

    def test_cloudflare_protection_href(self):
        html = f'<a href="/cdn-cgi/l/email-protection#{cf_encode("coach@rink.com", 0x1f)}">Email</a>'
        assert extract_obfuscated_emails(html) == ["coach@rink.com"]

    def test_decode_cfemail_key_prefix(self):
        assert decode_cfemail(cf_encode("a@b.co", 0x7a)) == "a@b.co"

    def test_decode_cfemail_malformed(self):
        with pytest.raises(ValueError):
            decode_cfemail("abc")

    def test_numeric_entities(self):
        html = ("<p>&#106;&#97;&#110;&#101;&#64;&#99;&#108;&#117;&#98;"
                "&#46;&#111;&#114;&#103;</p>")
        assert extract_obfuscated_emails(html) == ["jane@club.org"]

    def test_partial_entity_encoding(self):
        assert extract_obfuscated_emails("<p>info&#64;rink.com</p>") == ["info@rink.com"]

    def test_entity_run_without_email_ignored(self):
        assert extract_obfuscated_emails("<p>&#169;&#160;2024 Rink Club</p>") == []

    def test_base64_attribute(self):
        value = base64.b64encode(b"coach@rink.org").decode()
        html = f'<span data-enc-email="{value}"></span>'
        assert extract_obfuscated_emails(html) == ["coach@rink.org"]

    def test_rot13_attribute_fallback(self):
        value = codecs.encode("coach@rink.org", "rot_13")
        html = f'<span data-enc-email="{value}"></span>'
        assert extract_obfuscated_emails(html) == ["coach@rink.org"]

    def test_encoded_attribute_without_at_dropped(self):
        assert decode_encoded_attribute(base64.b64encode(b"hello world").decode()) is None

    def test_failing_decoder_does_not_affect_others(self):
        html = '<span data-cfemail="abc"></span><p>info&#64;rink.com</p>'
        assert extract_obfuscated_emails(html) == ["info@rink.com"]


class TestPhones:
    def test_formatted_phone_found(self):
        assert extract_phone_numbers("<p>Call (401) 555-1234 today</p>") == ["(401) 555-1234"]

    def test_same_number_deduplicated(self):
        html = "<p>(401) 555-1234</p><p>401-555-1234</p>"
        assert extract_phone_numbers(html) == ["(401) 555-1234"]

    def test_version_marker_rejected(self):
        assert extract_phone_numbers("<p>Build v4015551234</p>") == []

    def test_repeated_digits_rejected(self):
        assert extract_phone_numbers("<p>555-555-5555</p>") == []

    def test_sequential_digits_rejected(self):
        assert extract_phone_numbers("<p>123-456-7890</p>") == []

    def test_dotted_version_string_rejected(self):
        assert extract_phone_numbers("<p>release 301.555.2020.4</p>") == []

    def test_script_content_ignored(self):
        assert extract_phone_numbers("<script>var id = '401-555-1234';</script>") == []

    def test_compact_date_rejected(self):
        assert is_plausible_phone("2011051234") is False

    def test_too_short(self):
        assert is_plausible_phone("555-1234") is False

    @pytest.mark.parametrize("phone, expected", [
        ("(401) 555-1234", True),
        ("401-555-1234", True),
        ("+1 401 555 1234", True),
        ("4015551234", False),
        ("+44 20 7946 0958", False),
    ])
    def test_strict_regional(self, phone, expected):
        assert is_strict_regional_phone(phone) is expected


class TestProximity:
    def test_name_right_before_email(self):
        html = "<p>Jane Doe — jane@club.org</p>"
        assert find_name_near("jane@club.org", html) == "Jane Doe"

    @pytest.mark.parametrize("html, email, expected", [
        ("<p>Contact Jane Doe — jane@club.org</p>", "jane@club.org", "Jane Doe"),
        ("<p>Head Coach Mary Smith mary@rink.org</p>", "mary@rink.org", "Mary Smith"),
    ])
    def test_label_words_before_name_are_dropped(self, html, email, expected):
        assert find_name_near(email, html) == expected

    def test_name_dash_title(self):
        html = "<p>Jane Doe - Head Coach<br>jane@club.org</p>"
        assert find_name_near("jane@club.org", html) == "Jane Doe"
        assert find_title_near("jane@club.org", html) == "Head Coach"

    def test_title_colon_name(self):
        html = "<p>Head Coach: Maria Lopez</p><p>mlopez@rink.org</p>"
        assert find_name_near("mlopez@rink.org", html) == "Maria Lopez"
        assert find_title_near("mlopez@rink.org", html) == "Head Coach"

    def test_bracketed_name(self):
        html = "<li>jane@club.org (Jane Doe)</li>"
        assert find_name_near("jane@club.org", html) == "Jane Doe"

    def test_labelled_title(self):
        html = "<p>Title: Registrar</p><p>reg@club.org</p>"
        assert find_title_near("reg@club.org", html) == "Registrar"

    def test_local_part_fallback(self):
        html = "<p>sarah.connor@rink.org</p>"
        assert find_name_near("sarah.connor@rink.org", html) == "Sarah Connor"

    def test_stop_words_are_not_names(self):
        html = "<p>Contact Us</p><p>office@rink.org</p>"
        assert find_name_near("office@rink.org", html) is None

    def test_phone_near_email(self):
        html = "<p>Jane Doe<br>Phone: (401) 555-1234<br>jane@club.org</p>"
        assert find_phone_near("jane@club.org", html) == "(401) 555-1234"

    def test_email_not_on_page(self):
        assert find_title_near("x@club.org", "<p>nothing</p>") is None
        assert find_phone_near("x@club.org", "<p>nothing</p>") is None
