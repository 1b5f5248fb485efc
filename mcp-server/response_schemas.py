"""Response schemas and minification for MCP tool responses.

Minifies MCP tool return values to reduce LLM context token waste.
data/analyses/*.json (persisted analyses) is NOT affected, only MCP
return values.

The move list is compacted to standard PGN text with move-quality
suffixes (1.e4 e5 2.Nf3 Nc6?! ...) which is natural for the LLM agent
to read.
"""

from __future__ import annotations

import os

# PGN annotation suffix per classification
_ANNOTATIONS = {
    "inaccuracy": "?!",
    "mistake": "?",
    "blunder": "??",
    "brilliant": "!!",
}

_KEY_MOMENT_CLASSES = ("mistake", "blunder")
_MAX_KEY_MOMENTS = 8


# ---------------------------------------------------------------------------
# Minification functions
# ---------------------------------------------------------------------------


def minify_game_analysis(analysis: dict, game_id: str | None = None) -> dict:
    """Minify a GameAnalysis wire dict for MCP response.

    Replaces the per-move records with an annotated PGN string, counts
    classifications per side and keeps only mistakes and blunders as
    key moments.

    Args:
        analysis: GameAnalysis.to_dict() output.
        game_id: Identifier to echo back, if any.

    Returns:
        Minified dict with reduced token footprint.
    """
    moves = analysis.get("moves", [])
    result = {
        "game_id": game_id,
        "white_accuracy": analysis.get("whiteAccuracy"),
        "black_accuracy": analysis.get("blackAccuracy"),
        "white_rating": analysis.get("whiteRating"),
        "black_rating": analysis.get("blackRating"),
        "move_list": _moves_to_pgn_string(moves),
    }

    counts: dict[str, dict[str, int]] = {"white": {}, "black": {}}
    key_moments = []
    for m in moves:
        color = "white" if m.get("color") == "w" else "black"
        label = m.get("classification", "")
        counts[color][label] = counts[color].get(label, 0) + 1
        if label in _KEY_MOMENT_CLASSES and len(key_moments) < _MAX_KEY_MOMENTS:
            key_moments.append({
                "move": f"{m.get('moveNumber')}{'.' if color == 'white' else '...'}{m.get('san')}",
                "classification": label,
                "best": m.get("bestMoveSan"),
                "eval_before": m.get("evalBefore"),
                "eval_after": m.get("evalAfter"),
            })

    result["classifications"] = counts
    result["key_moments"] = key_moments

    # Removed fields: uci, bestMove, topLines

    return result


def minify_evaluation(evaluation: dict) -> dict:
    """Minify a position evaluation dict for MCP response.

    Truncates PV moves to 5 per line, removes a null mate key.

    Args:
        evaluation: Dict with fen, depth, eval, mate, best_move,
            best_move_san and lines.

    Returns:
        Minified dict.
    """
    result = {
        "fen": evaluation.get("fen"),
        "depth": evaluation.get("depth"),
        "eval": evaluation.get("eval"),
        "best_move_san": evaluation.get("best_move_san"),
    }

    mate = evaluation.get("mate")
    if mate is not None:
        result["mate"] = mate

    minified_lines = []
    for rank, line in enumerate(evaluation.get("lines", []), 1):
        moves = line.get("moves", [])
        minified_lines.append({
            "rank": rank,
            "eval": line.get("eval"),
            "moves": moves[:5] if isinstance(moves, list) else moves,
        })
    result["lines"] = minified_lines

    return result


# ---------------------------------------------------------------------------
# Helper: move list to PGN string
# ---------------------------------------------------------------------------


def _moves_to_pgn_string(moves: list[dict]) -> str:
    """Convert per-move records to an annotated PGN move string.

    Numbers come from each record's moveNumber and color, so games set up
    from a FEN keep their numbering. A Black move opening the list is
    written as 'N...'.

    E.g., moves for 12...Nf6 13.e4 -> '12...Nf6 13.e4'

    Args:
        moves: GameAnalysis.to_dict()["moves"] records.

    Returns:
        PGN-formatted move string.
    """
    parts = []
    for i, m in enumerate(moves):
        san = m.get("san", "") + _ANNOTATIONS.get(m.get("classification"), "")
        number = m.get("moveNumber")
        if m.get("color") == "w":
            parts.append(f"{number}.{san}")
        elif i == 0:
            parts.append(f"{number}...{san}")
        else:
            parts.append(san)

    return " ".join(parts)


# ---------------------------------------------------------------------------
# Validation schemas (dict-based)
# ---------------------------------------------------------------------------

GAME_ANALYSIS_SCHEMA = {
    "game_id": (str, type(None)),
    "white_accuracy": (int, float),
    "black_accuracy": (int, float),
    "white_rating": int,
    "black_rating": int,
    "move_list": str,
    "classifications": dict,
    "key_moments": list,
}

EVALUATION_SCHEMA = {
    "fen": str,
    "depth": int,
    "eval": int,
    "best_move_san": str,
    "lines": list,
}

QUEUE_SCHEMA = {
    "active": (str, type(None)),
    "pending": list,
    "selected": (str, type(None)),
}

STATUS_SCHEMA = {
    "game_id": str,
    "status": str,
}

ERROR_SCHEMA = {
    "error": str,
}


def validate_response(response: dict, schema: dict) -> list[str]:
    """Validate a response dict against a schema.

    Only runs when GAME_REVIEW_VALIDATE=1 env var is set.

    Args:
        response: Response dict to validate.
        schema: Dict mapping key names to expected types (or tuple of types).

    Returns:
        List of validation error strings (empty = valid).
    """
    if os.environ.get("GAME_REVIEW_VALIDATE") != "1":
        return []

    errors = []

    if not isinstance(response, dict):
        errors.append(f"Response is not a dict: {type(response).__name__}")
        return errors

    for key, expected_types in schema.items():
        if key not in response:
            errors.append(f"Missing key: {key}")
            continue

        value = response[key]
        if isinstance(expected_types, tuple):
            if not isinstance(value, expected_types):
                type_names = ", ".join(t.__name__ for t in expected_types)
                errors.append(
                    f"Key '{key}': expected ({type_names}), "
                    f"got {type(value).__name__}"
                )
        else:
            if not isinstance(value, expected_types):
                errors.append(
                    f"Key '{key}': expected {expected_types.__name__}, "
                    f"got {type(value).__name__}"
                )

    return errors
