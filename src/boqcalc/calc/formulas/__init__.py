"""Formula language: tokenizer, parser, expression tree and evaluator."""

from boqcalc.calc.formulas.evaluator import Evaluation, evaluate
from boqcalc.calc.formulas.parser import parse

__all__ = ["Evaluation", "evaluate", "parse"]
