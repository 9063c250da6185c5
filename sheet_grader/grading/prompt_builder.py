"""
Prompt builder for answer-sheet grading.

Builds the four-message conversation sent for every grading call: one system
message with the grading rubric, then the question paper, answer key and
answer sheet, each as a text label followed by an image reference.
"""

from sheet_grader.models import ChatMessage, ImageBlock, TextBlock

REMARKS_HEADER = "\n\nEXTRA REMARKS (VERY IMPORTANT!!): "
REVALUATED_INSTRUCTION = (
    "\nGive remarks as 'Revaluated' for all questions extra remarks applied to."
)


class PromptBuilder:
    """
    Builds grading prompts for the multimodal model.

    The system prompt is fixed; revaluation only appends the examiner's
    remarks to it.
    """

    SYSTEM_PROMPT = """You are an experienced and impartial examiner grading a student's handwritten answer sheet.

You will receive three images, in this order:
1. The question paper, listing every question and the marks it carries.
2. The answer key, containing the expected answers and the marking scheme.
3. The student's answer sheet.

GRADING RULES:
1. Grade EVERY question on the question paper, in the order it appears, even if the student did not attempt it.
2. Compare the student's answer with the answer key. Award marks according to the marking scheme only.
3. Award partial marks where the marking scheme allows them. Never award more than the marks the question carries.
4. Unattempted or illegible answers receive zero marks and a remark saying so.
5. Read the student's name and roll number from the answer sheet. Use an empty string if either is missing.
6. Keep each remark short and specific: say what was correct and what was missing.

OUTPUT FORMAT (respond with ONLY this JSON, no other text):
{
  "student_name": "<name written on the answer sheet>",
  "roll_no": "<roll number written on the answer sheet>",
  "answers": [
    {
      "question_no": "<question number as printed on the question paper>",
      "score": [<marks awarded>, <maximum marks>],
      "remarks": "<short justification>"
    }
  ]
}"""

    QUESTION_PAPER_LABEL = "Question Paper:"
    ANSWER_KEY_LABEL = "Answer Keys:"
    ANSWER_SHEET_LABEL = "Answer Sheet:"

    @staticmethod
    def get_system_prompt(extra_remarks: str | None = None) -> str:
        """
        Get the system prompt, with the revaluation suffix when remarks are given.

        Args:
            extra_remarks: None for an initial grading. For a revaluation, the
                examiner's remarks; an empty string still adds the remarks header.

        Returns:
            The system prompt text.
        """
        if extra_remarks is None:
            return PromptBuilder.SYSTEM_PROMPT

        prompt = PromptBuilder.SYSTEM_PROMPT + REMARKS_HEADER + extra_remarks
        if extra_remarks:
            prompt += REVALUATED_INSTRUCTION
        return prompt

    @staticmethod
    def build_messages(
        question_paper_ref: str,
        answer_key_ref: str,
        answer_sheet_ref: str,
        extra_remarks: str | None = None,
    ) -> list[ChatMessage]:
        """
        Build the full message list for a grading call.

        Args:
            question_paper_ref: URI of the question paper image.
            answer_key_ref: URI of the answer key image.
            answer_sheet_ref: URI of the student's answer sheet image.
            extra_remarks: Revaluation remarks, None for an initial grading.

        Returns:
            System message followed by the three labelled image messages.
        """
        segments = (
            (PromptBuilder.QUESTION_PAPER_LABEL, question_paper_ref),
            (PromptBuilder.ANSWER_KEY_LABEL, answer_key_ref),
            (PromptBuilder.ANSWER_SHEET_LABEL, answer_sheet_ref),
        )

        messages = [
            ChatMessage(role="system", content=PromptBuilder.get_system_prompt(extra_remarks))
        ]
        for label, ref in segments:
            messages.append(
                ChatMessage(role="user", content=(TextBlock(text=label), ImageBlock(url=ref)))
            )
        return messages
