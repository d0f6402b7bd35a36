from openai import OpenAI
import google.generativeai as genai
from daily_outreach.config import settings
from daily_outreach.models.contact import Contact, Company
from daily_outreach.models.profile import StrategicProfile, SenderProfile, CustomerProfile
from dataclasses import dataclass
from typing import Optional
import asyncio
import logging
import json
import time

logger = logging.getLogger(__name__)


@dataclass
class ComposedEmail:
    subject: str
    body: str
    tone: str = "default"


class EmailComposer:
    """
    Writes the cold email for one contact.
    Uses Gemini or OpenAI when configured, otherwise a plain template.
    Generated text addresses the contact through merge fields so edits and
    sends always render current contact data.
    """

    def __init__(self):
        self.provider = "openai"
        self.client = None
        self.model = settings.AI_MODEL

        # Initialize Gemini if configured (preferred or if OpenAI missing)
        if settings.GEMINI_API_KEY:
            try:
                genai.configure(api_key=settings.GEMINI_API_KEY)
                self.client = genai.GenerativeModel(settings.AI_MODEL)
                self.provider = "gemini"
                logger.info("Email composer initialized with Gemini")
            except Exception as e:
                logger.error(f"Failed to initialize Gemini: {e}")

        # Fallback/Default to OpenAI if Gemini not set but OpenAI is
        if not self.client and settings.OPENAI_API_KEY:
            try:
                self.client = OpenAI(api_key=settings.OPENAI_API_KEY)
                self.provider = "openai"
                logger.info("Email composer initialized with OpenAI")
            except Exception as e:
                logger.error(f"Failed to initialize OpenAI: {e}")

    def _generate_content(self, prompt: str) -> str:
        """Helper to generate content from either provider."""
        if not self.client:
            raise ValueError("AI Client not initialized")

        if self.provider == "gemini":
            max_retries = 3
            base_delay = 5  # Seconds

            for attempt in range(max_retries):
                try:
                    response = self.client.generate_content(prompt)
                    text = response.text.strip()
                    # Clean markdown code blocks if present
                    if text.startswith("```json"):
                        text = text[7:]
                    if text.startswith("```"):
                        text = text[3:]
                    if text.endswith("```"):
                        text = text[:-3]
                    return text.strip()
                except Exception as e:
                    is_rate_limit = "429" in str(e) or "quota" in str(e).lower()
                    if is_rate_limit and attempt < max_retries - 1:
                        logger.warning(f"Gemini Rate Limit Hit. Waiting {base_delay}s... (Attempt {attempt+1}/{max_retries})")
                        time.sleep(base_delay * (attempt + 1))
                    else:
                        logger.error(f"Gemini generation failed: {e}")
                        raise

        response = self.client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            response_format={"type": "json_object"},
            temperature=0.7
        )
        return response.choices[0].message.content

    def _build_prompt(
        self,
        contact: Contact,
        company: Company,
        sender: Optional[SenderProfile],
        product: Optional[StrategicProfile],
        customer: Optional[CustomerProfile],
        tone: str
    ) -> str:
        return f"""
        Act as a B2B sales rep writing a short, personal cold email.

        RECIPIENT:
        Name: {contact.name}
        Role: {contact.role or 'Unknown'}
        Company: {company.name}
        Company description: {company.description or ''}

        WHAT WE OFFER:
        {product.title if product else ''}
        {product.product_service if product and product.product_service else ''}

        IDEAL CUSTOMER:
        {customer.target_description if customer and customer.target_description else ''}
        Pain points: {customer.pain_points if customer and customer.pain_points else ''}

        SENDER:
        {sender.display_name if sender else ''}{', ' + sender.title if sender and sender.title else ''}

        RULES:
        - Tone: {tone}. Under 120 words. One clear call to action.
        - Write {{{{first_name}}}} instead of the recipient's first name.
        - Write {{{{contact_company_name}}}} instead of the recipient's company name.
        - No placeholders other than those two.

        OUTPUT FORMAT (JSON ONLY):
        {{
            "subject": "<subject line>",
            "body": "<plain text email body>"
        }}
        """

    def _fallback_email(
        self,
        sender: Optional[SenderProfile],
        product: Optional[StrategicProfile],
        tone: str
    ) -> ComposedEmail:
        offer = product.title if product else "what we do"
        signature = sender.display_name if sender else ""
        body = (
            "Hi {{first_name}},\n\n"
            f"I came across {{{{contact_company_name}}}} and thought {offer} could be a good fit for your team.\n\n"
            "Would you be open to a quick chat next week?\n\n"
            f"Best,\n{signature}"
        ).rstrip()
        return ComposedEmail(
            subject="Quick question for {{contact_company_name}}",
            body=body,
            tone=tone
        )

    async def compose(
        self,
        contact: Contact,
        company: Company,
        sender: Optional[SenderProfile] = None,
        product: Optional[StrategicProfile] = None,
        customer: Optional[CustomerProfile] = None,
        tone: str = "default"
    ) -> ComposedEmail:
        """Generate subject and body for one contact."""
        if not self.client:
            return self._fallback_email(sender, product, tone)

        prompt = self._build_prompt(contact, company, sender, product, customer, tone)
        try:
            result_text = await asyncio.to_thread(self._generate_content, prompt)
            data = json.loads(result_text)
            subject = (data.get("subject") or "").strip()
            body = (data.get("body") or "").strip()
            if not subject or not body:
                raise ValueError("Empty subject or body in AI response")
            return ComposedEmail(subject=subject, body=body, tone=tone)
        except Exception as e:
            logger.error(f"AI email generation failed for contact {contact.id}: {e}")
            return self._fallback_email(sender, product, tone)


_email_composer: Optional[EmailComposer] = None


def get_email_composer() -> EmailComposer:
    """Get the email composer instance."""
    global _email_composer

    if _email_composer is None:
        _email_composer = EmailComposer()

    return _email_composer
