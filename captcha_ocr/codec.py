"""
Character codec and CTC greedy decoding.

Class layout: indices 0..A-1 are ALPHABET[i], index A is the CTC blank.
Note this differs from models that reserve index 0 for blank.
"""

from typing import Iterable, List, Sequence

import numpy as np

from .errors import DimensionMismatch


# ============================================================================
# CHARACTER CODEC
# ============================================================================

class CharCodec:
    """Maps characters <-> class indices. The blank is the last class."""

    def __init__(self, alphabet: Sequence[str]):
        if not alphabet:
            raise ValueError('alphabet must not be empty')
        if len(set(alphabet)) != len(alphabet):
            raise ValueError(f'alphabet contains duplicate symbols: {alphabet!r}')
        self.alphabet = tuple(alphabet)
        self.blank_index = len(self.alphabet)
        self.num_classes = len(self.alphabet) + 1  # +1 for blank

    @classmethod
    def from_config(cls, config) -> 'CharCodec':
        return cls(config.alphabet)

    def idx_to_char(self, idx: int) -> str:
        """Symbol for a class index; blank and invalid indices map to ''."""
        if 0 <= idx < self.blank_index:
            return self.alphabet[idx]
        return ''

    def char_to_idx(self, ch: str) -> int:
        try:
            return self.alphabet.index(ch)
        except ValueError:
            raise ValueError(f'Character {ch!r} is not in the alphabet') from None

    def encode(self, text: str) -> List[int]:
        """Convert a label string to its class indices (no blanks inserted)."""
        return [self.char_to_idx(ch) for ch in text]

    def decode(self, indices: Iterable[int]) -> str:
        """Collapse a per-timestep class sequence into text.

        A class is emitted when it differs from the class at the previous
        timestep and is not blank. The previous class is tracked even for
        blanks, so A-blank-A yields 'AA'.
        """
        chars = []
        prev = None
        for idx in indices:
            idx = int(idx)
            if idx != prev and idx != self.blank_index:
                chars.append(self.idx_to_char(idx))
            prev = idx
        return ''.join(chars)

    def decode_output(self, output) -> str:
        return ctc_greedy_decode(output, self)

    def __len__(self):
        return self.num_classes


# ============================================================================
# CTC GREEDY DECODING
# ============================================================================

def best_path(output, num_classes: int) -> np.ndarray:
    """
    Per-timestep argmax of a (seq_len, 1, num_classes) score tensor.

    Ties go to the lowest class index. Scores only need to be ordered;
    logits, probabilities and log-probabilities all give the same path.
    NaN scores rank below every number, like -inf.

    Raises:
        DimensionMismatch: tensor is not 3-D, batch != 1, or the class
            dimension differs from num_classes
    """
    scores = np.asarray(output)
    if scores.ndim != 3:
        raise DimensionMismatch(expected=('seq_len', 1, num_classes), got=scores.shape)
    if scores.shape[2] != num_classes:
        raise DimensionMismatch(expected=num_classes, got=scores.shape[2])
    if scores.shape[1] != 1:
        raise DimensionMismatch(expected=('seq_len', 1, num_classes), got=scores.shape)

    if scores.shape[0] == 0:
        return np.zeros(0, dtype=np.int64)
    scores = scores[:, 0, :]
    # NaN never wins a strict '>' comparison; np.argmax would pick it first
    nan_mask = np.isnan(scores)
    if nan_mask.any():
        scores = np.where(nan_mask, -np.inf, scores)
    # np.argmax returns the first occurrence of the maximum
    return np.argmax(scores, axis=1)


def ctc_greedy_decode(output, codec: CharCodec) -> str:
    """Decode a (seq_len, 1, num_classes) model output into text."""
    return codec.decode(best_path(output, codec.num_classes).tolist())
