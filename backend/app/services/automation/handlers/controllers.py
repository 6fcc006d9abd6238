"""
Per-controller capture handlers.

Each one opens the controller's public privacy / unlisting page and
captures it for the proof trail.
"""
from .base import CaptureHandler


class TruecallerHandler(CaptureHandler):
    key = "truecaller"
    domains = ("truecaller.com",)
    candidate_urls = (
        "https://www.truecaller.com/privacy-center/request/unlist",
        "https://www.truecaller.com/unlisting",
        "https://support.truecaller.com/hc/en-us/articles/115004177305",
    )


class NaukriHandler(CaptureHandler):
    key = "naukri"
    domains = ("naukri.com",)
    default_url = "https://www.naukri.com/helpcenter/privacy-policy"
    candidate_urls = (
        "https://www.naukri.com/helpcenter/privacy-policy",
        "https://www.naukri.com/helpcenter/faq/privacy",
        "https://www.naukri.com/mynaukri/privacy",
    )


class OlxHandler(CaptureHandler):
    key = "olx"
    domains = ("olx.in", "olx.com")
    default_url = "https://www.olx.in/help/"
    candidate_urls = (
        "https://www.olx.in/help/",
        "https://help.olx.com/hc/en-us/requests/new",
        "https://help.olx.com/hc/en-us/categories/203850648-Privacy",
    )


class ShineHandler(CaptureHandler):
    key = "shine"
    domains = ("shine.com",)
    default_url = "https://www.shine.com/privacy-policy/"
    candidate_urls = (
        "https://www.shine.com/privacy-policy/",
        "https://www.shine.com/terms-conditions/",
        "https://learning.shine.com/t/contact-us",
    )


class TimesJobsHandler(CaptureHandler):
    key = "timesjobs"
    domains = ("timesjobs.com",)
    default_url = "https://www.timesjobs.com/candidate/privacy-policy.html"
    candidate_urls = (
        "https://www.timesjobs.com/candidate/privacy-policy.html",
        "https://www.timesjobs.com/candidate/contact.html",
        "https://www.timesjobs.com/candidate/terms-conditions.html",
    )
