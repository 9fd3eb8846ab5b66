# audit_chat/services/intent_service.py
"""
Context-richness policy for a chat turn.

Classifies the user's message as a greeting, a light conversational turn, or
a substantive question about the report, and maps that to run-level
instructions. Heuristic only; the word lists and cut-offs are tuning knobs.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List
import re


@dataclass
class IntentResult:
    intent: str                      # greeting | conversational | substantive
    confidence: float                # 0..1
    signals: Dict[str, object]       # debug: matched_keywords, is_question, length


class IntentService:
    """
    Fast heuristics for routing the amount of report context a reply should use.
    """

    GREET = {"hi", "hello", "hey", "good morning", "good afternoon", "good evening", "greetings"}
    SMALLTALK = {"thanks", "thank you", "lol", "haha", "cool", "nice", "ok", "okay", "got it", "great", "awesome"}

    # Business lexicon (area → words/phrases) for marketing and website reports
    LEXICON = {
        "strategy": {
            "marketing", "strategy", "brand", "branding", "positioning", "audience", "customer",
            "competitor", "competition", "budget", "roi", "revenue", "growth", "priority", "priorities",
        },
        "channels": {
            "social", "instagram", "facebook", "linkedin", "tiktok", "email", "newsletter", "ads",
            "advertising", "campaign", "content", "blog", "influencer", "channel",
        },
        "website": {
            "website", "site", "seo", "page", "landing", "conversion", "speed", "mobile", "design",
            "navigation", "traffic", "ux", "checkout", "analytics",
        },
        "report": {
            "score", "report", "audit", "analysis", "red flag", "opportunity", "opportunities",
            "recommendation", "recommend", "roadmap", "action plan", "benchmark", "improve", "fix",
        },
    }

    def __init__(self, min_len: int = 2, substantive_min_words: int = 6):
        self.min_len = min_len
        self.substantive_min_words = substantive_min_words

    # ---------- Public API ----------

    def classify(self, text: str) -> IntentResult:
        raw = (text or "").strip()
        normalized = self._normalize(raw)
        low = normalized.lower()
        words = low.split()

        signals: Dict[str, object] = {
            "is_question": self._looks_like_question(low),
            "length": len(low),
            "word_count": len(words),
        }

        if not low or len(low) < self.min_len:
            return IntentResult("conversational", 0.3, {**signals, "reason": "too_short"})

        hits: Dict[str, List[str]] = {area: [] for area in self.LEXICON}
        for area, bag in self.LEXICON.items():
            for w in bag:
                if self._word_hit(w, low):
                    hits[area].append(w)
        total_hits = sum(len(v) for v in hits.values())
        signals["matched_keywords"] = {k: sorted(v) for k, v in hits.items() if v}

        # Short pleasantries with no business content
        if total_hits == 0 and len(words) <= 5:
            if self._contains_any(low, self.GREET):
                return IntentResult("greeting", 0.95, {**signals, "match": "greeting"})
            if self._contains_any(low, self.SMALLTALK):
                return IntentResult("conversational", 0.9, {**signals, "match": "smalltalk"})

        if total_hits >= 2:
            return IntentResult("substantive", 0.9, signals)
        if total_hits == 1 and (signals["is_question"] or len(words) >= self.substantive_min_words):
            return IntentResult("substantive", 0.75, signals)
        if signals["is_question"] and len(words) >= self.substantive_min_words:
            return IntentResult("substantive", 0.6, {**signals, "reason": "long_question"})
        return IntentResult("conversational", 0.6, signals)

    @staticmethod
    def instructions_for(intent: str, report_type: str) -> str:
        """Run-level additional instructions for the classified intent."""
        report = "website analysis" if report_type == "website" else "marketing audit"
        if intent == "greeting":
            return (
                "The user is greeting you. Reply warmly in one or two sentences and offer to "
                f"walk them through their {report} report. Do not summarize the report yet."
            )
        if intent == "conversational":
            return (
                "Keep this reply brief and conversational (a few sentences). Refer to the "
                f"{report} report only if the user's message calls for it."
            )
        return (
            f"Answer using the specific findings, scores and recommendations in the {report} "
            "report. Be concrete and actionable, and use short headings or bullet lists where "
            "they help readability."
        )

    # ---------- helpers ----------

    @staticmethod
    def _normalize(s: str) -> str:
        s = s.strip()
        s = re.sub(r"\s+", " ", s)
        return s

    @staticmethod
    def _looks_like_question(s: str) -> bool:
        if "?" in s:
            return True
        return bool(re.match(r"^(how|what|when|where|who|why|which|can|do|does|is|are|should|will|would|could)\b", s.lower()))

    @staticmethod
    def _contains_any(text: str, bag: set) -> bool:
        for w in bag:
            if re.search(rf"\b{re.escape(w)}\b", text):
                return True
        return False

    @staticmethod
    def _word_hit(word: str, text_low: str) -> bool:
        """
        Match single words with simple inflections; keep phrases as-is.
        """
        if " " in word.strip():
            return re.search(rf"\b{re.escape(word)}\b", text_low) is not None
        pat = rf"\b{re.escape(word)}(?:s|es|ed|ing)?\b"
        return re.search(pat, text_low) is not None
