import httpx
from cryptography.fernet import Fernet

from encryption import EmailCipher
from mailer import MailjetMailer, form_url, render_access_token_email

def test_cipher_round_trip_and_plaintext_fallback():
    cipher = EmailCipher(Fernet.generate_key().decode())
    assert cipher.is_enabled
    stored = cipher.encrypt("a@x.com")
    assert stored != "a@x.com"
    assert cipher.decrypt(stored) == "a@x.com"
    # legacy plaintext rows come back unchanged
    assert cipher.decrypt("legacy@x.com") == "legacy@x.com"

def test_cipher_without_key_passes_through():
    cipher = EmailCipher(None)
    assert not cipher.is_enabled
    assert cipher.encrypt("a@x.com") == "a@x.com"
    assert not EmailCipher("not-a-fernet-key").is_enabled

def test_render_email():
    link = form_url(42, "https://feedback.example.edu/")
    assert link == "https://feedback.example.edu/feedback/42"
    subject, text, html = render_access_token_email("Course X", "AbC123xyZ789", link)
    assert subject == "Access Token for Course X"
    for body in (text, html):
        assert "AbC123xyZ789" in body and link in body and "Course X" in body

def _mailer(handler):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return MailjetMailer("key", "secret", "from@x.com", "Feedback", client=client)

def test_mailjet_success():
    seen = {}
    def handler(request):
        seen["json"] = request.read()
        return httpx.Response(200, json={"Messages": [{"Status": "success"}]})
    result = _mailer(handler).send("a@x.com", "Subj", "body", "<p>body</p>")
    assert result.success
    assert b"a@x.com" in seen["json"] and b"HTMLPart" in seen["json"]

def test_mailjet_rejection_and_network_error():
    assert not _mailer(lambda r: httpx.Response(401, text="unauthorized")).send("a@x.com", "s", "b").success

    def boom(request):
        raise httpx.ConnectError("down", request=request)
    result = _mailer(boom).send("a@x.com", "s", "b")
    assert not result.success and "down" in result.error

def test_mailjet_without_credentials():
    result = MailjetMailer("", "", "from@x.com", "Feedback").send("a@x.com", "s", "b")
    assert not result.success

def test_render_email_escapes_title_in_html():
    title = '<script>alert("x")</script> & Co'
    subject, text, html = render_access_token_email(title, "AbC123xyZ789", "https://f.example/feedback/1?a=1&b=2")
    assert "<script>" not in html
    assert "&lt;script&gt;" in html and "&amp; Co" in html
    assert 'href="https://f.example/feedback/1?a=1&amp;b=2"' in html
    # plain-text parts keep the title verbatim
    assert title in subject and title in text
