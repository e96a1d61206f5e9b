import pickle
import os
import biomart
import pandas as pd

# bcolors
OKBLUE = '\033[94m'
ENDC = '\033[0m'
BOLD = '\033[1m'


# read WGCNA obj
def readWGCNA(file):
    """
    Read a WGCNA from a saved pickle file.

    :param file: Name / path of WGCNA object
    :type file: str

    :return: WGCNA object
    :rtype: WGCNA class
    """
    if not os.path.isfile(file):
        raise ValueError('WGCNA object not found at given path!')

    with open(file, 'rb') as picklefile:
        wgcna = pickle.load(picklefile)

    print(f"{BOLD}{OKBLUE}Reading {wgcna.name} WGCNA done!{ENDC}")
    return wgcna


def parseBiomart(data, attributes, maps=None):
    """
    convert tab separated biomart answer into a gene information table indexed by the first attribute
    """
    rows = [line.split('\t') for line in data.splitlines() if line != '']
    geneInfo = pd.DataFrame([row[:len(attributes)] for row in rows], columns=attributes)

    geneInfo.index = geneInfo[attributes[0]]
    geneInfo.index.name = None
    geneInfo.drop(attributes[0], axis=1, inplace=True)

    if maps is not None:
        geneInfo.columns = maps[1:]

    return geneInfo


def getGeneList(dataset='hsapiens_gene_ensembl',
                attributes=None,
                maps=None,
                host='http://www.ensembl.org/biomart'):
    """
    get table that map gene ensembl id to gene name from biomart

    :param dataset: name of the dataset we used from biomart; human: hsapiens_gene_ensembl and mouse: mmusculus_gene_ensembl
    :type dataset: string
    :param attributes: List the types of data we want (default: ['ensembl_gene_id', 'external_gene_name', 'gene_biotype'])
    :type attributes: list
    :param maps: mapping between attributes and column names of gene information you want to show (default: ['gene_id', 'gene_name', 'gene_biotype'])
    :type maps: list
    :param host: biomart server
    :type host: str

    :return: table extracted from biomart related to the datasets including information from attributes
    :rtype: pandas dataframe
    """
    if attributes is None:
        attributes = ['ensembl_gene_id', 'external_gene_name', 'gene_biotype']
    if maps is None:
        maps = ['gene_id', 'gene_name', 'gene_biotype']
    if len(maps) != len(attributes):
        raise ValueError("attributes and maps should have the same length!")

    server = biomart.BiomartServer(host)
    mart = server.datasets[dataset]

    # Get the mapping between the attributes
    response = mart.search({'attributes': attributes})
    data = response.raw.data.decode('ascii')

    return parseBiomart(data, attributes, maps=maps)
