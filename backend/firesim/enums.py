from enum import Enum


class AppRole(str, Enum):
    ADMIN = "ADMIN"
    STUDENT = "STUDENT"


class WizardStep(str, Enum):
    INTRO = "INTRO"
    SITUATION = "SITUATION"
    DEFINITION = "DEFINITION"
    ANALYSIS = "ANALYSIS"
    SOLUTION = "SOLUTION"
    REPORT = "REPORT"


# Wizard order; the progress bar is computed from positions in this tuple.
WIZARD_STEPS: tuple[WizardStep, ...] = (
    WizardStep.INTRO,
    WizardStep.SITUATION,
    WizardStep.DEFINITION,
    WizardStep.ANALYSIS,
    WizardStep.SOLUTION,
    WizardStep.REPORT,
)

STEP_LABELS_KO: dict[WizardStep, str] = {
    WizardStep.INTRO: "사고 개요",
    WizardStep.SITUATION: "현상 파악",
    WizardStep.DEFINITION: "문제 정의",
    WizardStep.ANALYSIS: "원인 분석",
    WizardStep.SOLUTION: "해결 방안",
    WizardStep.REPORT: "보고서 작성",
}

# Steps where the learning guide pops up on entry.
GUIDED_STEPS: frozenset[WizardStep] = frozenset(
    {
        WizardStep.SITUATION,
        WizardStep.DEFINITION,
        WizardStep.ANALYSIS,
        WizardStep.SOLUTION,
    }
)
