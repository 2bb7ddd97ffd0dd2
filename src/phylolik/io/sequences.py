"""
Sequence file parsing and alignment handling.

Alignments are stored as integer matrices. Resolved states are encoded
``0 .. n_states - 1``; ``UNKNOWN_CODE`` (-1) marks missing data. Nucleotide
alignments additionally encode IUPAC ambiguity codes as integers ``>= 4`` and
codon alignments encode the gap codon as ``GAP_CODE``. The lookup table
returned by :func:`state_vectors` turns any code into the conditional
likelihood vector of a leaf.
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

import numpy as np

from ..exceptions import StructuralError


# Genetic code tables (standard code)
GENETIC_CODE = {
    'TTT': 'F', 'TTC': 'F', 'TTA': 'L', 'TTG': 'L',
    'TCT': 'S', 'TCC': 'S', 'TCA': 'S', 'TCG': 'S',
    'TAT': 'Y', 'TAC': 'Y', 'TAA': '*', 'TAG': '*',
    'TGT': 'C', 'TGC': 'C', 'TGA': '*', 'TGG': 'W',
    'CTT': 'L', 'CTC': 'L', 'CTA': 'L', 'CTG': 'L',
    'CCT': 'P', 'CCC': 'P', 'CCA': 'P', 'CCG': 'P',
    'CAT': 'H', 'CAC': 'H', 'CAA': 'Q', 'CAG': 'Q',
    'CGT': 'R', 'CGC': 'R', 'CGA': 'R', 'CGG': 'R',
    'ATT': 'I', 'ATC': 'I', 'ATA': 'I', 'ATG': 'M',
    'ACT': 'T', 'ACC': 'T', 'ACA': 'T', 'ACG': 'T',
    'AAT': 'N', 'AAC': 'N', 'AAA': 'K', 'AAG': 'K',
    'AGT': 'S', 'AGC': 'S', 'AGA': 'R', 'AGG': 'R',
    'GTT': 'V', 'GTC': 'V', 'GTA': 'V', 'GTG': 'V',
    'GCT': 'A', 'GCC': 'A', 'GCA': 'A', 'GCG': 'A',
    'GAT': 'D', 'GAC': 'D', 'GAA': 'E', 'GAG': 'E',
    'GGT': 'G', 'GGC': 'G', 'GGA': 'G', 'GGG': 'G',
}

# Nucleotide order T, C, A, G; codon i is n0*16 + n1*4 + n2 with stops removed
NUCLEOTIDES = 'TCAG'
NUCLEOTIDE_TO_INDEX = {nuc: i for i, nuc in enumerate(NUCLEOTIDES)}
INDEX_TO_NUCLEOTIDE = {i: nuc for i, nuc in enumerate(NUCLEOTIDES)}

CODONS = [
    a + b + c
    for a in NUCLEOTIDES for b in NUCLEOTIDES for c in NUCLEOTIDES
    if GENETIC_CODE[a + b + c] != '*'
]
CODON_TO_INDEX = {codon: i for i, codon in enumerate(CODONS)}
INDEX_TO_CODON = {i: codon for i, codon in enumerate(CODONS)}

AMINO_ACIDS = 'ARNDCQEGHILKMFPSTWYV'
AA_TO_INDEX = {aa: i for i, aa in enumerate(AMINO_ACIDS)}
INDEX_TO_AA = {i: aa for i, aa in enumerate(AMINO_ACIDS)}

GAP_CODE = 64
UNKNOWN_CODE = -1

# IUPAC ambiguity codes, encoded after the four resolved nucleotides
NUCLEOTIDE_AMBIGUITY = {
    'R': 'AG', 'Y': 'CT', 'K': 'GT', 'M': 'AC', 'S': 'CG', 'W': 'AT',
    'B': 'CGT', 'D': 'AGT', 'H': 'ACT', 'V': 'ACG',
}
AMBIGUITY_TO_INDEX = {code: 4 + i for i, code in enumerate(NUCLEOTIDE_AMBIGUITY)}
INDEX_TO_AMBIGUITY = {i: code for code, i in AMBIGUITY_TO_INDEX.items()}

SEQTYPE_STATES = {'dna': 4, 'aa': 20, 'codon': 61}


def n_states_for(seqtype: str) -> int:
    """Number of resolved character states for a sequence type."""
    try:
        return SEQTYPE_STATES[seqtype]
    except KeyError:
        raise StructuralError(f"Unknown sequence type: {seqtype}") from None


def state_vectors(seqtype: str) -> np.ndarray:
    """
    Lookup table from state code to leaf conditional likelihood vector.

    Row ``code + 1`` holds the vector for ``code``, so that the unknown code
    -1 maps to row 0.

    Parameters
    ----------
    seqtype : str
        'dna', 'aa' or 'codon'

    Returns
    -------
    np.ndarray, shape (n_codes + 1, n_states)
        One-hot rows for resolved states, 0/1 masks for ambiguity codes and
        rows of ones for unknown data
    """
    n_states = n_states_for(seqtype)
    if seqtype == 'dna':
        n_codes = 4 + len(NUCLEOTIDE_AMBIGUITY)
    elif seqtype == 'codon':
        n_codes = GAP_CODE + 1
    else:
        n_codes = n_states

    table = np.ones((n_codes + 1, n_states))
    table[1:n_states + 1] = np.eye(n_states)
    if seqtype == 'dna':
        for code, members in NUCLEOTIDE_AMBIGUITY.items():
            row = np.zeros(n_states)
            for nuc in members:
                row[NUCLEOTIDE_TO_INDEX[nuc]] = 1.0
            table[AMBIGUITY_TO_INDEX[code] + 1] = row
    return table


@dataclass
class Alignment:
    """
    Multiple sequence alignment.

    Attributes
    ----------
    names : list[str]
        Sequence names/labels
    sequences : ndarray, shape (n_species, n_sites)
        Encoded sequences as integer arrays
    n_species : int
        Number of sequences
    n_sites : int
        Number of sites (alignment length)
    seqtype : str
        Sequence type ('codon', 'aa', 'dna')
    """

    names: list[str]
    sequences: np.ndarray
    n_species: int
    n_sites: int
    seqtype: str

    def __post_init__(self):
        n_states_for(self.seqtype)
        self.sequences = np.asarray(self.sequences)
        if self.sequences.size == 0 and self.sequences.ndim < 2:
            self.sequences = self.sequences.reshape(self.n_species, self.n_sites)
        if self.sequences.ndim != 2:
            raise StructuralError("Alignment sequences must form a rectangular matrix")
        if self.sequences.shape != (self.n_species, self.n_sites):
            raise StructuralError(
                f"Sequence matrix has shape {self.sequences.shape}, "
                f"expected ({self.n_species}, {self.n_sites})"
            )
        if len(self.names) != self.n_species:
            raise StructuralError(
                f"{len(self.names)} names given for {self.n_species} sequences"
            )
        if len(set(self.names)) != len(self.names):
            raise StructuralError("Sequence names must be unique")

    @property
    def n_states(self) -> int:
        return n_states_for(self.seqtype)

    def index_of(self, name: str) -> int:
        try:
            return self.names.index(name)
        except ValueError:
            raise StructuralError(f"No sequence named {name!r}") from None

    def column(self, site: int) -> np.ndarray:
        return self.sequences[:, site]

    @classmethod
    def from_dict(cls, sequences: Mapping[str, str], seqtype: str = "dna") -> "Alignment":
        """
        Build an alignment from a mapping of names to raw sequence strings.

        Raises
        ------
        StructuralError
            If the sequences do not all have the same length
        """
        names = list(sequences)
        raw = [re.sub(r'\s', '', sequences[name]).upper() for name in names]
        return cls._from_raw(names, raw, seqtype)

    @classmethod
    def _from_raw(cls, names: list[str], raw: list[str], seqtype: str) -> "Alignment":
        n_states_for(seqtype)
        lengths = {len(seq) for seq in raw}
        if len(lengths) > 1:
            raise StructuralError(f"Sequences have different lengths: {sorted(lengths)}")
        n_chars = lengths.pop() if lengths else 0

        if seqtype == 'codon':
            if n_chars % 3 != 0:
                raise StructuralError(f"Codon sequence length {n_chars} not divisible by 3")
            n_sites = n_chars // 3
            encoded = cls._encode_codons(raw, n_sites)
        elif seqtype == 'dna':
            n_sites = n_chars
            encoded = cls._encode_nucleotides(raw, n_sites)
        else:
            n_sites = n_chars
            encoded = cls._encode_amino_acids(raw, n_sites)

        return cls(
            names=names,
            sequences=encoded,
            n_species=len(names),
            n_sites=n_sites,
            seqtype=seqtype,
        )

    @classmethod
    def from_phylip(cls, filepath: Path | str, seqtype: str = "dna") -> "Alignment":
        """
        Parse PHYLIP format alignment file.

        Both the sequential layout with names on their own line and the
        layout with the name and the sequence on the same line are accepted.

        Parameters
        ----------
        filepath : Path or str
            Path to PHYLIP format file
        seqtype : str
            Sequence type: 'codon', 'aa', or 'dna'

        Returns
        -------
        Alignment
            Parsed alignment
        """
        filepath = Path(filepath)

        with open(filepath, 'r') as f:
            lines = [line.rstrip() for line in f.readlines()]

        header = lines[0].strip().split()
        n_species = int(header[0])
        n_chars = int(header[1])

        names = []
        sequences_raw = []

        i = 1
        while i < len(lines) and len(names) < n_species:
            line = lines[i].strip()
            i += 1
            if not line:
                continue

            parts = line.split(None, 1)
            name = parts[0]
            seq_data = re.sub(r'\s', '', parts[1]).upper() if len(parts) > 1 else ""
            names.append(name)

            while len(seq_data) < n_chars and i < len(lines):
                line = lines[i].strip()
                i += 1
                if line:
                    seq_data += re.sub(r'\s', '', line).upper()

            sequences_raw.append(seq_data)

        if len(names) != n_species:
            raise StructuralError(f"Expected {n_species} sequences, found {len(names)}")

        for name, seq in zip(names, sequences_raw):
            if len(seq) != n_chars:
                raise StructuralError(
                    f"Sequence {name} has length {len(seq)}, expected {n_chars}"
                )

        return cls._from_raw(names, sequences_raw, seqtype)

    @classmethod
    def from_fasta(cls, filepath: Path | str, seqtype: str = "dna") -> "Alignment":
        """
        Parse FASTA format alignment file.

        Parameters
        ----------
        filepath : Path or str
            Path to FASTA format file
        seqtype : str
            Sequence type: 'codon', 'aa', or 'dna'

        Returns
        -------
        Alignment
            Parsed alignment
        """
        filepath = Path(filepath)

        names = []
        sequences_raw = []

        with open(filepath, 'r') as f:
            current_name = None
            current_seq = []

            for line in f:
                line = line.strip()
                if not line:
                    continue

                if line.startswith('>'):
                    if current_name is not None:
                        names.append(current_name)
                        sequences_raw.append(''.join(current_seq))
                    current_name = line[1:].strip()
                    current_seq = []
                else:
                    current_seq.append(line.upper())

            if current_name is not None:
                names.append(current_name)
                sequences_raw.append(''.join(current_seq))

        if not names:
            raise StructuralError("No sequences found in FASTA file")

        sequences_clean = [re.sub(r'\s', '', seq) for seq in sequences_raw]
        return cls._from_raw(names, sequences_clean, seqtype)

    @classmethod
    def read(cls, filepath: Path | str, seqtype: str = "dna") -> "Alignment":
        """Read a FASTA file, or a PHYLIP file when the first line is a header."""
        with open(filepath, 'r') as f:
            first = f.readline().strip()
        if first.startswith('>'):
            return cls.from_fasta(filepath, seqtype=seqtype)
        return cls.from_phylip(filepath, seqtype=seqtype)

    @staticmethod
    def _encode_codons(sequences: list[str], n_codons: int) -> np.ndarray:
        encoded = np.zeros((len(sequences), n_codons), dtype=np.int16)

        for i, seq in enumerate(sequences):
            for j in range(n_codons):
                codon = seq[j * 3: j * 3 + 3]
                if codon == '---':
                    encoded[i, j] = GAP_CODE
                elif codon in CODON_TO_INDEX:
                    encoded[i, j] = CODON_TO_INDEX[codon]
                else:
                    # Stop codon or unresolved
                    encoded[i, j] = UNKNOWN_CODE

        return encoded

    @staticmethod
    def _encode_nucleotides(sequences: list[str], n_sites: int) -> np.ndarray:
        """Encode DNA sequences (0=T, 1=C, 2=A, 3=G, ambiguity codes >= 4)."""
        encoded = np.zeros((len(sequences), n_sites), dtype=np.int16)

        for i, seq in enumerate(sequences):
            for j, nucleotide in enumerate(seq.replace('U', 'T')):
                if nucleotide in NUCLEOTIDE_TO_INDEX:
                    encoded[i, j] = NUCLEOTIDE_TO_INDEX[nucleotide]
                elif nucleotide in AMBIGUITY_TO_INDEX:
                    encoded[i, j] = AMBIGUITY_TO_INDEX[nucleotide]
                else:
                    encoded[i, j] = UNKNOWN_CODE

        return encoded

    @staticmethod
    def _encode_amino_acids(sequences: list[str], n_sites: int) -> np.ndarray:
        encoded = np.zeros((len(sequences), n_sites), dtype=np.int16)

        for i, seq in enumerate(sequences):
            for j, aa in enumerate(seq):
                encoded[i, j] = AA_TO_INDEX.get(aa, UNKNOWN_CODE)

        return encoded

    def decode(self, encoded_seq: np.ndarray) -> str:
        """Render one encoded sequence back to text."""
        if self.seqtype == 'codon':
            return ''.join(
                INDEX_TO_CODON.get(int(idx), '---' if idx == GAP_CODE else 'NNN')
                for idx in encoded_seq
            )
        if self.seqtype == 'dna':
            return ''.join(
                INDEX_TO_NUCLEOTIDE.get(int(idx)) or INDEX_TO_AMBIGUITY.get(int(idx), 'N')
                for idx in encoded_seq
            )
        return ''.join(INDEX_TO_AA.get(int(idx), 'X') for idx in encoded_seq)

    def to_phylip(self, filepath: Path | str) -> None:
        """
        Write alignment to PHYLIP format file.

        Parameters
        ----------
        filepath : Path or str
            Output file path
        """
        filepath = Path(filepath)

        with open(filepath, 'w') as f:
            n_chars = self.n_sites * (3 if self.seqtype == 'codon' else 1)
            f.write(f" {self.n_species}   {n_chars}\n\n")

            for name, encoded_seq in zip(self.names, self.sequences):
                f.write(f"{name}\n")
                seq = self.decode(encoded_seq)
                for i in range(0, len(seq), 60):
                    f.write(seq[i:i + 60] + '\n')
                f.write('\n')

    def to_fasta(self, filepath: Path | str) -> None:
        """
        Write alignment to FASTA format file.

        Parameters
        ----------
        filepath : Path or str
            Output file path
        """
        filepath = Path(filepath)

        with open(filepath, 'w') as f:
            for name, encoded_seq in zip(self.names, self.sequences):
                f.write(f">{name}\n")
                seq = self.decode(encoded_seq)
                for i in range(0, len(seq), 60):
                    f.write(seq[i:i + 60] + '\n')

    def __repr__(self) -> str:
        return (
            f"Alignment(n_species={self.n_species}, n_sites={self.n_sites}, "
            f"seqtype='{self.seqtype}')"
        )
