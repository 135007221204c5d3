import pytest

from storysync.workflows.html_sanitize import decode_bytes_auto, html_to_text, minimal_text_fix, sanitize_html


def test_sanitize_strips_vendor_markup_media_and_widgets():
    raw = (
        '<!-- wp:paragraph --><p class="intro" style="color:red">Hello &amp; <em>world</em></p><!-- /wp:paragraph -->'
        '[caption id="attachment_1"]<img src="a.png" alt="x"/>Caption text[/caption]'
        '<div class="sharedaddy sd-sharing">Share this</div>'
        "<script>alert(1)</script><nav>Menu</nav>"
    )

    assert sanitize_html(raw) == "<p>Hello &amp; <em>world</em></p>\n\nCaption text"


def test_sanitize_decodes_typographic_entities():
    raw = "<p>It&#8217;s&nbsp;late&hellip; &#8220;Run&#8221; &#8211; she said</p>"

    assert sanitize_html(raw) == "<p>It’s late… “Run” – she said</p>"


def test_sanitize_unwraps_containers_and_keeps_line_breaks():
    raw = '<div class="entry"><section><span data-x="1">line one</span><br>line two</section></div><hr/><a href="/x">tail</a>'

    assert sanitize_html(raw) == "line one\n\nline two\n\ntail"


def test_sanitize_keeps_allowed_tags_without_attributes():
    raw = '<h2 id="ch1">Chapter One</h2><blockquote class="q"><p>Quoted <strong>line</strong></p></blockquote>'

    result = sanitize_html(raw)

    assert "<h2>Chapter One</h2>" in result
    assert "<strong>line</strong>" in result
    assert "class=" not in result and "id=" not in result


def test_sanitize_removes_iframes_and_figures_with_content():
    raw = "<p>Before</p><figure><img src='x'/><figcaption>Photo credit</figcaption></figure><iframe>embed</iframe><p>After</p>"

    assert sanitize_html(raw) == "<p>Before</p>\n\n<p>After</p>"


def test_sanitize_empty_input():
    assert sanitize_html("") == ""
    assert sanitize_html(None) == ""


@pytest.mark.parametrize(
    "markup",
    [
        "<p>Hello &amp; goodbye &lt;tag&gt;</p>",
        "&amp;lt;script&amp;gt;x&amp;lt;/script&amp;gt;",
        "&#91;gallery ids=&quot;1&quot;&#93;<p>text</p>",
        "<p>a</p>\n\n\n   <p>   b   </p>",
        "<div><p>unclosed <em>emphasis</div>",
        "plain text with [brackets] and  spaces",
        "<![CDATA[hidden]]><p>shown</p><!-- note -->",
        "<<p>>odd<</p>>",
    ],
)
def test_sanitize_is_idempotent(markup):
    once = sanitize_html(markup)

    assert sanitize_html(once) == once


def test_html_to_text_flattens_markup():
    assert html_to_text("<p>One</p><p>Two&nbsp;<em>three</em></p>") == "One Two three"


def test_minimal_text_fix_repairs_mojibake():
    assert minimal_text_fix("donâ€™t stop") == "don’t stop"
    assert minimal_text_fix("zero\u200bwidth") == "zerowidth"


def test_decode_bytes_auto_prefers_header_charset():
    body = "café".encode("latin-1")

    assert decode_bytes_auto(body, {"content-type": "application/json; charset=ISO-8859-1"}) == "café"
